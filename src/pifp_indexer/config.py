"""Configuration management for the PIFP event indexer."""

import os
import tomllib
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError

DEFAULT_RPC_URL = "https://soroban-testnet.stellar.org"
DEFAULT_DATABASE_URL = "sqlite:./pifp_events.db"
_ROOT_MARKERS = (".pifp", ".git", "pyproject.toml")


def _find_repo_root(start_dir: Path) -> Path:
    """Nearest directory at or above `start_dir` holding `.pifp/`, `.git` or `pyproject.toml`."""
    for directory in (start_dir, *start_dir.parents):
        if any((directory / marker).exists() for marker in _ROOT_MARKERS):
            return directory
    return start_dir


def _load_repo_config_data(repo_root: Path) -> Optional[dict]:
    """Load repo config data from .pifp/config.toml if it exists."""
    config_file = repo_root / ".pifp" / "config.toml"

    if not config_file.exists():
        return None

    try:
        with open(config_file, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Malformed config file {config_file}: {e}") from e


def _nested_get(data: Optional[dict[str, Any]], path: list[str]) -> Any:
    cur: Any = data or {}
    for key in path:
        if not isinstance(cur, dict) or key not in cur:
            return None
        cur = cur[key]
    return cur


def _setting(
    env_name: str,
    repo_data: Optional[dict],
    repo_path: list[str],
    default: Any,
    cast: Callable[[Any], Any],
) -> Any:
    """Resolve one setting: environment first, then repo config, then default."""
    raw = os.environ.get(env_name)
    source = env_name
    if raw is None or raw == "":
        raw = _nested_get(repo_data, repo_path)
        source = ".pifp/config.toml [" + ".".join(repo_path) + "]"
    if raw is None:
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid {source}: {raw!r}") from e


def database_path_from_url(url: str) -> Path:
    """Accept `sqlite:path`, `sqlite://path` or a bare path."""
    if url.startswith("sqlite://"):
        url = url[len("sqlite://"):]
    elif url.startswith("sqlite:"):
        url = url[len("sqlite:"):]
    if not url:
        raise ConfigError("DATABASE_URL does not name a file")
    return Path(url).expanduser()


class BackoffConfig(BaseModel):
    """Exponential backoff schedule for transient upstream failures."""

    initial_seconds: float = Field(default=2.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_seconds: float = Field(default=60.0, ge=0.0)


class IndexerConfig(BaseModel):
    """Configuration for the indexer, its store and its read-only API.

    Pacing options (poll interval, batch size, timeout, backoff) never
    change what is stored.
    """

    rpc_url: str = Field(default=DEFAULT_RPC_URL)
    contract_id: Optional[str] = Field(default=None)
    database_path: Path = Field(default_factory=lambda: database_path_from_url(DEFAULT_DATABASE_URL))
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3001, ge=1, le=65535)
    poll_interval_seconds: float = Field(default=5.0, ge=0.0)
    max_batch_size: int = Field(default=100, ge=1, le=10000)
    start_ledger: int = Field(default=0, ge=0)
    fetch_timeout_seconds: float = Field(default=30.0, gt=0.0)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)

    model_config = {"frozen": True}

    @classmethod
    def from_env(
        cls,
        *,
        cli_database: Optional[str] = None,
        cli_contract_id: Optional[str] = None,
        require_contract: bool = True,
    ) -> "IndexerConfig":
        """Load configuration.

        Precedence: CLI option, environment variable, repo-local
        `.pifp/config.toml` (`[indexer]` table), default.

        Raises:
            ConfigError: if CONTRACT_ID is missing (and required) or any value is invalid
        """
        repo = _load_repo_config_data(_find_repo_root(Path.cwd()))

        contract_id = cli_contract_id or _setting("CONTRACT_ID", repo, ["indexer", "contract_id"], None, str)
        if require_contract and not contract_id:
            raise ConfigError("CONTRACT_ID environment variable is required")

        database_url = cli_database or _setting(
            "DATABASE_URL", repo, ["indexer", "database_url"], DEFAULT_DATABASE_URL, str
        )

        try:
            return cls(
                rpc_url=_setting("RPC_URL", repo, ["indexer", "rpc_url"], DEFAULT_RPC_URL, str),
                contract_id=contract_id,
                database_path=database_path_from_url(database_url),
                api_host=_setting("API_HOST", repo, ["indexer", "api_host"], "0.0.0.0", str),
                api_port=_setting("API_PORT", repo, ["indexer", "api_port"], 3001, int),
                poll_interval_seconds=_setting(
                    "POLL_INTERVAL_SECS", repo, ["indexer", "poll_interval_secs"], 5.0, float
                ),
                max_batch_size=_setting("EVENTS_PER_PAGE", repo, ["indexer", "events_per_page"], 100, int),
                start_ledger=_setting("START_LEDGER", repo, ["indexer", "start_ledger"], 0, int),
                fetch_timeout_seconds=_setting(
                    "FETCH_TIMEOUT_SECS", repo, ["indexer", "fetch_timeout_secs"], 30.0, float
                ),
                backoff=BackoffConfig(
                    initial_seconds=_setting(
                        "BACKOFF_INITIAL_SECS", repo, ["indexer", "backoff", "initial_secs"], 2.0, float
                    ),
                    multiplier=_setting(
                        "BACKOFF_MULTIPLIER", repo, ["indexer", "backoff", "multiplier"], 2.0, float
                    ),
                    max_seconds=_setting("BACKOFF_MAX_SECS", repo, ["indexer", "backoff", "max_secs"], 60.0, float),
                ),
            )
        except ValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(p) for p in first["loc"])
            raise ConfigError(f"Invalid configuration value for {loc}: {first['msg']}") from e
