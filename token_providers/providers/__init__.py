"""
Provider implementations.

Each client wraps one external API behind BaseProviderClient.
"""

from token_providers.providers.dexscreener import DexScreenerClient
from token_providers.providers.jupiter import JupiterClient
from token_providers.providers.rugcheck import RugCheckClient
from token_providers.providers.solscan import SolscanClient

__all__ = [
    "DexScreenerClient",
    "JupiterClient",
    "RugCheckClient",
    "SolscanClient",
]
