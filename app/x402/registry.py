# app/x402/registry.py
"""
Static token and network registry.

Maps (network, token type) to the asset identifier advertised in payment
requirements. Network families are named after their CAIP-2 namespace:

- "stacks": STX (native), sBTC and USDCx (SIP-010 contracts)
- "eip155": USDC on Base

Asset identifiers:
- STX: "STX"
- SIP-010 tokens: "<contract address>.<contract name>::<token name>"
- USDC: "eip155:<chain id>/erc20:<token address>"

Everything here is read-only after import and safe to share between requests.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from app.x402.errors import UnsupportedNetwork, UnsupportedToken

STACKS = "stacks"
EVM = "eip155"

NATIVE_STX = "STX"
SBTC = "sBTC"
USDCX = "USDCx"
USDC = "USDC"

# CAIP-2 identifiers by family and network name
NETWORK_IDS: Dict[str, Dict[str, str]] = {
    STACKS: {
        "mainnet": "stacks:1",
        "testnet": "stacks:2147483648",
    },
    EVM: {
        "base": "eip155:8453",
        "base-sepolia": "eip155:84532",
    },
}

SUPPORTED_TOKENS: Dict[str, Tuple[str, ...]] = {
    STACKS: (NATIVE_STX, SBTC, USDCX),
    EVM: (USDC,),
}

DEFAULT_TOKENS: Dict[str, str] = {
    STACKS: NATIVE_STX,
    EVM: USDC,
}


@dataclass(frozen=True)
class TokenContract:
    """A SIP-010 fungible token contract."""
    address: str
    name: str

    @property
    def asset_identifier(self) -> str:
        return f"{self.address}.{self.name}::{self.name}"

    def to_dict(self) -> Dict[str, str]:
        return {"address": self.address, "name": self.name}


TOKEN_CONTRACTS: Dict[str, Dict[str, TokenContract]] = {
    "mainnet": {
        SBTC: TokenContract("SM3VDXK3WZZSA84XXFKAFAF15NNZX32CTSG82JFQ4", "sbtc-token"),
        USDCX: TokenContract("SP120SBRBQJ00MCWS7TM5R8WJNTTKD5K0HFRC2CNE", "usdcx"),
    },
    "testnet": {
        SBTC: TokenContract("ST1F7QA2MDF17S807EPA36TSS8AMEFY4KA9TVGWXT", "sbtc-token"),
        USDCX: TokenContract("ST1NXBK3K5YYMD6FD41MVNP3JS1GABZ8TRVX023PT", "token-susdc"),
    },
}

# USDC contract addresses by network
USDC_ADDRESSES: Dict[str, str] = {
    "base": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    "base-sepolia": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
}

# EIP-712 domain of the USDC contracts, needed by clients to sign transfers
USDC_EIP712_DOMAIN: Dict[str, Dict[str, str]] = {
    "base": {"name": "USD Coin", "version": "2"},
    "base-sepolia": {"name": "USDC", "version": "2"},
}


def parse_network_id(network_id: str) -> Tuple[str, str]:
    """
    Split a CAIP-2 network id into (namespace, reference).

    Raises:
        UnsupportedNetwork: If the id is empty or not namespaced
    """
    if not isinstance(network_id, str) or ":" not in network_id:
        raise UnsupportedNetwork(
            f"Network id must be namespaced (family:reference), got {network_id!r}"
        )
    namespace, _, reference = network_id.partition(":")
    if not namespace or not reference:
        raise UnsupportedNetwork(
            f"Network id must be namespaced (family:reference), got {network_id!r}"
        )
    return namespace, reference


def network_to_caip2(family: str, network_name: str) -> str:
    """Get the CAIP-2 id of a named network ("testnet" -> "stacks:2147483648")."""
    try:
        return NETWORK_IDS[family][network_name]
    except KeyError:
        raise UnsupportedNetwork(f"Unknown network {family}/{network_name}")


def network_from_caip2(network_id: str) -> Tuple[str, str]:
    """Reverse of network_to_caip2: returns (family, network name)."""
    family, _ = parse_network_id(network_id)
    for name, caip2 in NETWORK_IDS.get(family, {}).items():
        if caip2 == network_id:
            return family, name
    raise UnsupportedNetwork(f"Unknown network id {network_id}")


def default_token(family: str) -> str:
    """Token type assumed when a payment does not name one."""
    return DEFAULT_TOKENS[family]


def get_token_contract(token_type: str, network_name: str) -> Optional[TokenContract]:
    """Contract info for a SIP-010 token, None for STX."""
    if token_type == NATIVE_STX:
        return None
    try:
        return TOKEN_CONTRACTS[network_name][token_type]
    except KeyError:
        raise UnsupportedToken(f"Unknown Stacks token {token_type} on {network_name}")


def get_asset_identifier(family: str, network_name: str, token_type: str) -> str:
    """
    Get the x402 asset identifier for a token on a network.

    Raises:
        UnsupportedToken: If the family does not know the token
    """
    if token_type not in SUPPORTED_TOKENS.get(family, ()):
        raise UnsupportedToken(f"Token {token_type} is not available on {family}")

    if family == STACKS:
        contract = get_token_contract(token_type, network_name)
        return NATIVE_STX if contract is None else contract.asset_identifier

    address = USDC_ADDRESSES.get(network_name)
    if address is None:
        raise UnsupportedNetwork(f"No USDC deployment known for {network_name}")
    return f"{network_to_caip2(family, network_name)}/erc20:{address}"


def get_token_extra(family: str, network_name: str, token_type: str) -> Dict[str, Any]:
    """Network-specific fields a client needs to build a payment for the token."""
    if family == STACKS:
        contract = get_token_contract(token_type, network_name)
        return {"tokenContract": contract.to_dict()} if contract else {}
    return dict(USDC_EIP712_DOMAIN.get(network_name, {}))


def validate_token_type(token_type: str, accepted: Iterable[str]) -> str:
    """
    Check a requested token type against the accepted-token set.

    Raises:
        UnsupportedToken: If the token is not accepted
    """
    accepted = list(accepted)
    if token_type not in accepted:
        raise UnsupportedToken(
            f"Token type {token_type} is not accepted",
            accepted=accepted,
            requested=token_type,
        )
    return token_type
