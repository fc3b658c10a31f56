"""Soroban RPC client for the `getEvents` method."""

import logging
from typing import Any

import requests

from ..errors import InvalidCursorError, RpcError, UnavailableError
from ..models import EventsPage

logger = logging.getLogger(__name__)

# JSON-RPC codes the endpoint uses for requests it will never accept.
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
HARD_ERROR_CODES = {INVALID_REQUEST, METHOD_NOT_FOUND, INVALID_PARAMS}

_POSITION_HINTS = ("cursor", "startledger", "start ledger", "paging token", "oldest ledger")


def build_params(
    contract_id: str,
    *,
    start_ledger: int | None,
    cursor: str | None,
    limit: int,
) -> dict[str, Any]:
    """Build `getEvents` params. A cursor, when given, replaces `startLedger`."""
    params: dict[str, Any] = {
        "filters": [
            {
                "type": "contract",
                "contractIds": [contract_id],
            }
        ],
        "pagination": {"limit": limit},
    }
    if cursor:
        params["pagination"]["cursor"] = cursor
    else:
        params["startLedger"] = start_ledger if start_ledger is not None else 0
    return params


def _classify_rpc_error(error: dict[str, Any]) -> Exception:
    code = error.get("code")
    message = str(error.get("message", ""))
    if code in (INVALID_REQUEST, INVALID_PARAMS) and any(h in message.lower() for h in _POSITION_HINTS):
        return InvalidCursorError(f"RPC rejected resume position ({code}): {message}")
    if code in HARD_ERROR_CODES:
        return RpcError(f"RPC hard error {code}: {message}", code=code)
    return UnavailableError(f"RPC soft error {code}: {message}")


class SorobanRpcClient:
    """Thin JSON-RPC client over `requests`.

    Every call is bounded by `timeout`. Failures are mapped onto the
    indexer's error taxonomy; retrying is the caller's job.
    """

    def __init__(self, rpc_url: str, *, timeout: float = 30.0, session: requests.Session | None = None):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def get_events(
        self,
        contract_id: str,
        *,
        start_ledger: int | None = None,
        cursor: str | None = None,
        limit: int = 100,
    ) -> EventsPage:
        """Fetch one page of contract events.

        Raises:
            UnavailableError: network failure, timeout, rate limit, 5xx, soft RPC error
            InvalidCursorError: the endpoint rejected the cursor / start ledger
            RpcError: any other non-retryable rejection
        """
        body = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getEvents",
            "params": build_params(contract_id, start_ledger=start_ledger, cursor=cursor, limit=limit),
        }

        try:
            response = self.session.post(self.rpc_url, json=body, timeout=self.timeout)
        except requests.Timeout as e:
            raise UnavailableError(f"RPC request timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise UnavailableError(f"RPC request failed: {e}") from e

        status = response.status_code
        if status in (408, 429) or status >= 500:
            raise UnavailableError(f"RPC returned HTTP {status}")
        if status >= 400:
            raise RpcError(f"RPC returned HTTP {status}: {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise UnavailableError(f"RPC returned an undecodable body: {e}") from e
        if not isinstance(data, dict):
            raise UnavailableError("RPC returned a non-object body")

        error = data.get("error")
        if isinstance(error, dict):
            raise _classify_rpc_error(error)

        result = data.get("result")
        if not isinstance(result, dict):
            raise UnavailableError("Empty result from getEvents")

        events = result.get("events") or []
        if not isinstance(events, list):
            raise UnavailableError("getEvents result has no event list")

        latest = result.get("latestLedger")
        page = EventsPage(
            events=events,
            cursor=result.get("cursor") or None,
            latest_ledger=int(latest) if isinstance(latest, (int, str)) and str(latest).isdigit() else None,
        )
        logger.debug(f"Fetched {len(page.events)} events (latest_ledger={page.latest_ledger})")
        return page
