"""Gateway services: ERP access, challenge tokens, rate limiting and audit logging."""

from .challenge import ChallengeTokenStore
from .erp import CredentialVerifier, ErpClient, ErpIdentity
from .erp_session import ErpSession
from .rate_limit import RateLimiter, RateLimitPolicy
from .security_log import SecurityEventKind, SecurityEventLogger

__all__ = [
    "ChallengeTokenStore",
    "CredentialVerifier",
    "ErpClient",
    "ErpIdentity",
    "ErpSession",
    "RateLimiter",
    "RateLimitPolicy",
    "SecurityEventKind",
    "SecurityEventLogger",
]
