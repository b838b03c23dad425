from dataclasses import dataclass

@dataclass(frozen=True)
class EndpointConfig:
    name: str   # unique within its list
    url: str    # http(s) for RPC, ws(s) for subscriptions

NETWORKS = ("mainnet", "devnet", "testnet")

# Public cluster endpoints, used when a config names a network but no endpoints
PUBLIC_RPC: dict[str, EndpointConfig] = {
    "mainnet": EndpointConfig(
        name="Solana Mainnet (public)",
        url="https://api.mainnet-beta.solana.com",
    ),
    "devnet": EndpointConfig(
        name="Solana Devnet (public)",
        url="https://api.devnet.solana.com",
    ),
    "testnet": EndpointConfig(
        name="Solana Testnet (public)",
        url="https://api.testnet.solana.com",
    ),
}

PUBLIC_WS: dict[str, EndpointConfig] = {
    "mainnet": EndpointConfig(
        name="Solana Mainnet (public)",
        url="wss://api.mainnet-beta.solana.com/",
    ),
    "devnet": EndpointConfig(
        name="Solana Devnet (public)",
        url="wss://api.devnet.solana.com/",
    ),
    "testnet": EndpointConfig(
        name="Solana Testnet (public)",
        url="wss://api.testnet.solana.com/",
    ),
}

def find_endpoint(endpoints: list[EndpointConfig], name: str) -> EndpointConfig | None:
    for endpoint in endpoints:
        if endpoint.name == name:
            return endpoint
    return None

def explorer_url(signature: str, network: str = "devnet") -> str:
    if network == "mainnet":
        return f"https://solscan.io/tx/{signature}"
    return f"https://solscan.io/tx/{signature}?cluster={network}"
