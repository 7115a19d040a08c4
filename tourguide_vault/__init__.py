"""TourGuide Vault.

Encrypted secrets vault and the token provider the TourGuideAI backend
uses to reach API keys, JWT secrets and encryption keys.
"""
from .version import __version__
from .cache import TokenCache
from .provider import SERVICES, TokenProvider, build_token_provider

__all__ = [
    "__version__",
    "TokenCache",
    "TokenProvider",
    "SERVICES",
    "build_token_provider",
]
