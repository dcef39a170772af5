"""Service layer exports."""

from .credential_cipher import CredentialCipher
from .quote_cache import QuoteCache
from .quote_service import QuoteService
from .rate_limiter import RateBudget, RateLimiter
from .symbol_service import SymbolDirectory, SymbolService
from .token_manager import TokenLifecycleManager

__all__ = [
    "CredentialCipher",
    "QuoteCache",
    "QuoteService",
    "RateBudget",
    "RateLimiter",
    "SymbolDirectory",
    "SymbolService",
    "TokenLifecycleManager",
]
