"""Shared API dependencies for the gateway services."""

from typing import Annotated

from fastapi import Depends

from erp_gateway.core.security import SessionTokenCodec, get_token_codec
from erp_gateway.services.challenge import ChallengeTokenStore, get_challenge_store
from erp_gateway.services.erp import CredentialVerifier, get_credential_verifier
from erp_gateway.services.erp_session import ErpSession, get_erp_session
from erp_gateway.services.rate_limit import RateLimiter, get_rate_limiter
from erp_gateway.services.security_log import SecurityEventLogger, get_security_logger

CSRF_HEADER = "X-CSRF-Token"
CSRF_BODY_FIELD = "_csrf"

# Type aliases for service dependencies
RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
TokenCodecDep = Annotated[SessionTokenCodec, Depends(get_token_codec)]
ChallengeStoreDep = Annotated[ChallengeTokenStore, Depends(get_challenge_store)]
SecurityLoggerDep = Annotated[SecurityEventLogger, Depends(get_security_logger)]
ErpSessionDep = Annotated[ErpSession, Depends(get_erp_session)]
CredentialVerifierDep = Annotated[CredentialVerifier, Depends(get_credential_verifier)]
