"""Upstream chain access: Soroban RPC client and the ledger fetcher built on it."""

from .client import SorobanRpcClient, build_params
from .fetcher import LedgerFetcher

__all__ = ["LedgerFetcher", "SorobanRpcClient", "build_params"]
