# app/core/config.py
from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Cross-Chain Gateway"

    # Payment enforcement is opt-in; protected routes are free while disabled
    X402_ENABLED: bool = False
    # Layout of 402 bodies: 1 = legacy inline, 2 = structured
    X402_PROTOCOL_VERSION: Literal[1, 2] = 2

    # Stacks
    STACKS_NETWORK: Literal["mainnet", "testnet"] = "testnet"
    SERVER_ADDRESS_STACKS: Optional[str] = None
    STACKS_FACILITATOR_URL: Optional[str] = "https://facilitator.stacksx402.com"

    # EVM (Base)
    EVM_NETWORK: Literal["base", "base-sepolia"] = "base-sepolia"
    SERVER_ADDRESS_EVM: Optional[str] = None
    EVM_FACILITATOR_URL: Optional[str] = "https://x402.org/facilitator"

    X402_MAX_TIMEOUT_SECONDS: int = 300
    X402_FACILITATOR_TIMEOUT_SECONDS: float = 30.0
    X402_SETTLEMENT_CACHE_TTL_SECONDS: int = 300

    # Guessing the network of a legacy X-PAYMENT proof from its shape is
    # unreliable; routes should declare their legacy network instead.
    X402_LEGACY_HEURISTICS_ENABLED: bool = False

    X402_AUDIT_ENABLED: bool = True
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env


@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
