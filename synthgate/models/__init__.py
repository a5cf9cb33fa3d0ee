from synthgate.models.cached_result import CachedResult
from synthgate.models.credential import CredentialSecret, CredentialUsage

__all__ = [
    "CachedResult",
    "CredentialSecret",
    "CredentialUsage",
]
