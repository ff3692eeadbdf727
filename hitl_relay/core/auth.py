"""Bearer authentication for the agent-facing API.

Two credential kinds are accepted:

1. The static ``AUTH_TOKEN`` (single-user agents) -> method ``static_token``
2. A Cognito-issued RS256 JWT verified against the pool JWKS -> method ``cognito_jwt``,
   ``user_id`` is the ``sub`` claim.
"""

import hmac
from dataclasses import dataclass, field
from functools import lru_cache

import jwt as pyjwt
import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from hitl_relay.core.config import get_settings
from hitl_relay.core.exceptions import PermissionDeniedError

logger = structlog.get_logger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

STATIC_TOKEN = "static_token"
COGNITO_JWT = "cognito_jwt"


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller of the agent-facing API."""

    user_id: str
    method: str
    claims: dict = field(default_factory=dict)

    @property
    def is_user_token(self) -> bool:
        """True when the caller proved a concrete user identity (JWT)."""
        return self.method == COGNITO_JWT


@lru_cache
def get_jwks_client() -> PyJWKClient:
    """Create a cached JWKS client pointing at the Cognito user pool."""
    settings = get_settings()
    return PyJWKClient(f"{settings.cognito_issuer}/.well-known/jwks.json", cache_keys=True, lifespan=600)


def decode_cognito_jwt(token: str) -> AuthContext:
    """Verify and decode a Cognito JWT (ID or access token).

    Raises ``HTTPException(401)`` on any validation failure.
    """
    settings = get_settings()
    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)
        payload = pyjwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            issuer=settings.cognito_issuer,
            options={
                "verify_aud": False,  # checked below, claim depends on token_use
                "require": ["sub", "exp", "iss"],
            },
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.InvalidTokenError as exc:
        logger.warning("jwt_verification_failed", error=str(exc), error_type=type(exc).__name__)
        raise HTTPException(status_code=401, detail="Invalid token.")
    except pyjwt.PyJWKClientError as exc:
        logger.warning("jwks_lookup_failed", error=str(exc))
        raise HTTPException(status_code=401, detail="Invalid token.")

    token_use = payload.get("token_use")
    if token_use == "id":
        if payload.get("aud") != settings.cognito_app_client_id:
            raise HTTPException(status_code=401, detail="Invalid token.")
    elif token_use == "access":
        if payload.get("client_id") != settings.cognito_app_client_id:
            raise HTTPException(status_code=401, detail="Invalid token.")
    else:
        raise HTTPException(status_code=401, detail="Invalid token.")

    return AuthContext(user_id=payload["sub"], method=COGNITO_JWT, claims=payload)


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthContext:
    """FastAPI dependency that authenticates the agent-facing caller.

    Usage::

        @router.post("/protected")
        async def protected(auth: AuthContext = Depends(require_auth)):
            ...
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")

    token = credentials.credentials
    settings = get_settings()

    if settings.auth_token and hmac.compare_digest(token.encode(), settings.auth_token.encode()):
        auth = AuthContext(user_id="static-token", method=STATIC_TOKEN)
    elif settings.cognito_enabled:
        auth = decode_cognito_jwt(token)
    else:
        raise HTTPException(status_code=401, detail="Invalid token.")

    # Set user_id on request state for downstream use (error handlers, audit logging)
    request.state.user_id = auth.user_id

    return auth


def resolve_acting_user(auth: AuthContext, target_user_id: str | None) -> str | None:
    """User id an agent-facing call acts for.

    JWT callers act for themselves; naming a different ``target_user_id`` is
    forbidden (no delegation). Static-token callers act for whatever
    ``target_user_id`` they name, possibly none.
    """
    if auth.is_user_token:
        if target_user_id and target_user_id != auth.user_id:
            raise PermissionDeniedError("caller_user_id must match target_user_id.")
        return target_user_id or auth.user_id
    return target_user_id
