import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import urlparse

from dotenv import load_dotenv

from .endpoints import NETWORKS, PUBLIC_RPC, PUBLIC_WS, EndpointConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "tx_racer.json"
EXAMPLE_CONFIG_PATH = "tx_racer.example.json"


class ConfigError(ValueError):
    """Configuration or key material is missing or invalid."""


@dataclass
class AppConfig:
    private_key: Union[str, list[int]] = field(repr=False)
    rpc_endpoints: list[EndpointConfig]
    ws_endpoints: list[EndpointConfig]
    network: str = "devnet"
    transaction_count: int = 1
    delay_seconds: float = 2.0
    subscription_timeout: float = 100.0
    detail_retries: int = 10
    detail_retry_delay: float = 1.0
    lamports: int = 100
    encoding: str = "base58"
    loaded_path: Optional[str] = None

    def keypair(self):
        from .transaction import parse_private_key
        return parse_private_key(self.private_key)


def _endpoint_list(entries: Any, key: str, url_key: str = "url") -> list[EndpointConfig]:
    if not isinstance(entries, list):
        raise ConfigError(f"'{key}' must be a list")
    endpoints = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("name") or not entry.get(url_key):
            raise ConfigError(f"Every entry in '{key}' needs 'name' and '{url_key}'")
        endpoints.append(EndpointConfig(name=str(entry["name"]), url=str(entry[url_key])))
    return endpoints


def _check_endpoints(endpoints: list[EndpointConfig], kind: str, schemes: tuple[str, ...]) -> None:
    if not endpoints:
        raise ConfigError(f"No {kind} endpoints configured")
    seen = set()
    for endpoint in endpoints:
        if endpoint.name in seen:
            raise ConfigError(f"Duplicate {kind} endpoint name: {endpoint.name}")
        seen.add(endpoint.name)
        if urlparse(endpoint.url).scheme not in schemes:
            raise ConfigError(f"{kind} endpoint {endpoint.name} must use {' or '.join(schemes)}: {endpoint.url}")


def _number(data: dict, key: str, default, cast, allow_zero: bool = False):
    value = data.get(key, default)
    try:
        value = cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{key}' must be a number") from e
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"'{key}' must be {'non-negative' if allow_zero else 'positive'}")
    return value


def _positive(data: dict, key: str, default, cast):
    return _number(data, key, default, cast)


def _non_negative(data: dict, key: str, default):
    return _number(data, key, default, float, allow_zero=True)


def parse_config(data: dict, loaded_path: Optional[str] = None) -> AppConfig:
    """Build and validate an AppConfig from the JSON document."""
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a JSON object")

    private_key = os.environ.get("TX_RACER_PRIVATE_KEY") or data.get("privateKey")
    if not private_key:
        raise ConfigError("privateKey is missing (set it in the config file or TX_RACER_PRIVATE_KEY)")

    network = data.get("network", "devnet")
    if network not in NETWORKS:
        raise ConfigError(f"Unknown network: {network} (expected one of {', '.join(NETWORKS)})")

    rpc_endpoints: list[EndpointConfig] = []
    ws_endpoints: list[EndpointConfig] = []
    if "endpoints" in data:
        # paired entries as {name, rpcUrl, wsUrl}; either URL may be omitted
        paired = data["endpoints"]
        if not isinstance(paired, list):
            raise ConfigError("'endpoints' must be a list")
        rpc_endpoints += _endpoint_list([e for e in paired if isinstance(e, dict) and e.get("rpcUrl")], "endpoints", "rpcUrl")
        ws_endpoints += _endpoint_list([e for e in paired if isinstance(e, dict) and e.get("wsUrl")], "endpoints", "wsUrl")
    if "rpcEndpoints" in data:
        rpc_endpoints += _endpoint_list(data["rpcEndpoints"], "rpcEndpoints")
    if "wsEndpoints" in data:
        ws_endpoints += _endpoint_list(data["wsEndpoints"], "wsEndpoints")

    if not any(k in data for k in ("endpoints", "rpcEndpoints", "wsEndpoints")):
        logger.info("No endpoints configured, using public %s endpoints", network)
        rpc_endpoints = [PUBLIC_RPC[network]]
        ws_endpoints = [PUBLIC_WS[network]]

    _check_endpoints(rpc_endpoints, "RPC", ("http", "https"))
    _check_endpoints(ws_endpoints, "WebSocket", ("ws", "wss"))

    encoding = data.get("encoding", "base58")
    if encoding not in ("base58", "base64"):
        raise ConfigError(f"Unsupported encoding: {encoding}")

    return AppConfig(
        private_key=private_key,
        rpc_endpoints=rpc_endpoints,
        ws_endpoints=ws_endpoints,
        network=network,
        transaction_count=_positive(data, "transactionCount", 1, int),
        delay_seconds=_non_negative(data, "delaySeconds", 2.0),
        subscription_timeout=_positive(data, "subscriptionTimeoutSeconds", 100.0, float),
        detail_retries=_positive(data, "detailRetries", 10, int),
        detail_retry_delay=_non_negative(data, "detailRetryDelaySeconds", 1.0),
        lamports=_positive(data, "lamports", 100, int),
        encoding=encoding,
        loaded_path=loaded_path,
    )


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Load the JSON config file.

    Lookup order: explicit `path`, TX_RACER_CONFIG, tx_racer.json and finally
    tx_racer.example.json. A .env file in the working directory is read first
    so TX_RACER_* variables can live there.
    """
    load_dotenv()

    explicit = path or os.environ.get("TX_RACER_CONFIG")
    candidates = [explicit] if explicit else [DEFAULT_CONFIG_PATH, EXAMPLE_CONFIG_PATH]

    for candidate in candidates:
        file = Path(candidate)
        if not file.is_file():
            logger.debug("Config file %s not found", candidate)
            continue
        try:
            data = json.loads(file.read_text())
        except json.JSONDecodeError as e:
            raise ConfigError(f"{candidate} is not valid JSON: {e}") from e
        if candidate == EXAMPLE_CONFIG_PATH:
            logger.warning("%s not found, falling back to %s", DEFAULT_CONFIG_PATH, EXAMPLE_CONFIG_PATH)
        return parse_config(data, loaded_path=str(file))

    raise ConfigError(f"Configuration file not found: {' or '.join(candidates)}")
