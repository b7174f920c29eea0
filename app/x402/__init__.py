# app/x402/__init__.py
"""
x402 payment gateway.

Puts HTTP 402 payment negotiation and settlement in front of priced routes,
accepting payments on Stacks (STX, sBTC, USDCx) and EVM (USDC on Base).

Key components:
- routes: immutable gateway configuration (prices, networks, payees)
- requirements: 402 bodies in the v1 and v2 layouts
- codec: Payment-Signature / X-PAYMENT header decoding
- router: per-network settlement capabilities
- facilitator: HTTP client for facilitator services
- dedup: at-most-once settlement per proof
- gateway: per-request payment state machine
- middleware: FastAPI integration
- audit: transaction audit logging

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
