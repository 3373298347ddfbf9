"""Per-route request pipeline.

Every protected route declares a :class:`RequestGateway` dependency. The
gateway runs its stages in a fixed order and stops at the first rejection::

    rate limit (429) -> body validation (400) -> session token (401)
        -> challenge token (403) -> handler

A safe-method request that passes every stage is issued a fresh challenge
token in the ``X-CSRF-Token`` response header. Rejected requests never add
entries to the challenge registry.

Body validation is done here rather than through a FastAPI body parameter so
that a malformed request cannot skip ahead of the rate limiter, and a
rejected request never reaches the handler.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from fastapi import HTTPException, Request, Response, status
from pydantic import BaseModel, ValidationError

from erp_gateway.api.v1.dependencies import (
    CSRF_BODY_FIELD,
    CSRF_HEADER,
    ChallengeStoreDep,
    RateLimiterDep,
    SecurityLoggerDep,
    TokenCodecDep,
)
from erp_gateway.core.errors import TokenExpired, TokenInvalid
from erp_gateway.core.result import Err, Ok
from erp_gateway.core.security import IdentityClaim, SessionTokenCodec, extract_bearer_token
from erp_gateway.services.challenge import MUTATING_METHODS, SAFE_METHODS, ChallengeTokenStore
from erp_gateway.services.rate_limit import (
    RateLimitDecision,
    RateLimiter,
    rate_limit_key,
)
from erp_gateway.services.security_log import SecurityEventLogger, client_ip

logger = logging.getLogger(__name__)

BodyT = TypeVar("BodyT", bound=BaseModel)

_MISSING = object()


@dataclass(frozen=True)
class GatewayContext(Generic[BodyT]):
    """What a handler receives once every stage has passed."""

    identity: IdentityClaim | None
    body: BodyT | None
    rate: RateLimitDecision
    challenge_token: str | None = None

    @property
    def user(self) -> IdentityClaim:
        if self.identity is None:
            raise RuntimeError("Route is not authenticated")
        return self.identity

    def require_body(self) -> BodyT:
        if self.body is None:
            raise RuntimeError("Route does not declare a request body")
        return self.body


def _format_errors(exc: ValidationError) -> list[dict[str, Any]]:
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        errors.append({"field": location or "body", "message": error.get("msg", "Invalid value")})
    return errors


class RequestGateway(Generic[BodyT]):
    """FastAPI dependency that admits, validates and authenticates a request.

    Args:
        policy: Name of the rate limit policy to charge.
        body: Pydantic model the JSON body must satisfy, or None for no body.
        authenticate: Require a valid ``Authorization: Bearer`` session token.
        verify_challenge: Require a one-time challenge token. ``None`` means
            "only for mutating methods".
    """

    def __init__(
        self,
        policy: str,
        *,
        body: type[BodyT] | None = None,
        authenticate: bool = True,
        verify_challenge: bool | None = None,
    ) -> None:
        self.policy = policy
        self.body = body
        self.authenticate = authenticate
        self.verify_challenge = verify_challenge

    async def __call__(
        self,
        request: Request,
        response: Response,
        limiter: RateLimiterDep,
        codec: TokenCodecDep,
        challenges: ChallengeStoreDep,
        audit: SecurityLoggerDep,
    ) -> GatewayContext[BodyT]:
        bearer = extract_bearer_token(request.headers.get("authorization"))

        decision = self._admit(request, limiter, codec, audit, bearer)
        rate_headers = decision.headers()
        response.headers.update(rate_headers)
        # Re-applied by the error handler to later rejections
        request.state.rate_limit_headers = rate_headers

        payload: Any = _MISSING
        body: BodyT | None = None
        model = self.body
        if model is not None:
            payload = await self._read_json(request, strict=True)
            body = self._validate(model, payload)

        identity = None
        if self.authenticate:
            identity = self._verify_session(request, codec, audit, bearer)

        if self._challenge_required(request.method):
            if payload is _MISSING:
                payload = await self._read_json(request, strict=False)
            self._verify_challenge(request, payload, challenges, audit)

        challenge_token = None
        if request.method in SAFE_METHODS:
            challenge_token = challenges.issue()
            response.headers[CSRF_HEADER] = challenge_token

        return GatewayContext(
            identity=identity,
            body=body,
            rate=decision,
            challenge_token=challenge_token,
        )

    def _admit(
        self,
        request: Request,
        limiter: RateLimiter,
        codec: SessionTokenCodec,
        audit: SecurityEventLogger,
        bearer: str | None,
    ) -> RateLimitDecision:
        policy = limiter.policy(self.policy)
        uid = None
        if policy.key_by_user and bearer:
            peeked = codec.verify(bearer)
            if isinstance(peeked, Ok):
                uid = peeked.value.uid

        outcome = limiter.admit(policy, rate_limit_key(policy, client_ip(request), uid))
        if isinstance(outcome, Err):
            audit.rate_limit_exceeded(request, policy.name)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=str(outcome.error),
                headers=outcome.error.headers,
            )
        return outcome.value

    async def _read_json(self, request: Request, *, strict: bool) -> Any:
        raw = await request.body()
        if not raw:
            if strict:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail={"message": "Request body is required", "errors": []},
                )
            return None
        try:
            return json.loads(raw)
        except ValueError as err:
            if strict:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail={"message": "Request body is not valid JSON", "errors": []},
                ) from err
            return None

    def _validate(self, model: type[BodyT], payload: Any) -> BodyT:
        try:
            return model.model_validate(payload)
        except ValidationError as err:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"message": "Validation failed", "errors": _format_errors(err)},
            ) from err

    def _verify_session(
        self,
        request: Request,
        codec: SessionTokenCodec,
        audit: SecurityEventLogger,
        bearer: str | None,
    ) -> IdentityClaim:
        if bearer is None:
            audit.unauthorized_access(request, "missing_token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication token not provided",
            )

        outcome = codec.verify(bearer)
        if isinstance(outcome, Ok):
            return outcome.value

        error = outcome.error
        if isinstance(error, TokenExpired):
            audit.token_expired(request)
            message = "Token expired. Please log in again"
        elif isinstance(error, TokenInvalid):
            audit.unauthorized_access(request, "invalid_token")
            message = "Invalid token"
        else:
            logger.warning("Session token verification failed: %s", error)
            audit.unauthorized_access(request, "authentication_error")
            message = "Authentication error"
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": message, "code": error.reason},
        )

    def _challenge_required(self, method: str) -> bool:
        if self.verify_challenge is None:
            return method in MUTATING_METHODS
        return self.verify_challenge

    def _verify_challenge(
        self,
        request: Request,
        payload: Any,
        challenges: ChallengeTokenStore,
        audit: SecurityEventLogger,
    ) -> None:
        token = request.headers.get(CSRF_HEADER)
        if not token and isinstance(payload, dict):
            token = payload.get(CSRF_BODY_FIELD)
        outcome = challenges.redeem(token)
        if isinstance(outcome, Err):
            audit.csrf_failure(request)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=str(outcome.error),
            )
