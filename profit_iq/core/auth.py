"""Bearer token verification for contractor accounts.

Tokens are Supabase access tokens. Legacy projects sign them with the shared
HS256 secret; newer ones use asymmetric ES256 keys published at the project's
JWKS endpoint. Projects and documents are owned by the token's ``sub``.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

import jwt
from fastapi import Header, HTTPException
from jwt import PyJWKClient

from profit_iq.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

JWKS_PATH = "/auth/v1/.well-known/jwks.json"

_jwks_clients: dict[str, PyJWKClient] = {}
_jwks_lock = threading.Lock()


@dataclass
class CurrentUser:
    id: str
    email: Optional[str] = None


def _jwks_client(base_url: str) -> PyJWKClient:
    url = base_url + JWKS_PATH
    with _jwks_lock:
        client = _jwks_clients.get(url)
        if client is None:
            client = PyJWKClient(url, cache_keys=True, lifespan=3600)
            _jwks_clients[url] = client
        return client


def _claims_kwargs(settings: Settings) -> dict[str, Any]:
    audience = (settings.supabase_jwt_audience or "").strip()
    if audience:
        return {"audience": audience, "options": {"verify_aud": True}}
    return {"options": {"verify_aud": False}}


def _verify_shared_secret(token: str, settings: Settings) -> Optional[dict]:
    if not settings.supabase_jwt_secret:
        return None
    try:
        return jwt.decode(token, settings.supabase_jwt_secret, algorithms=["HS256"], **_claims_kwargs(settings))
    except jwt.InvalidTokenError:
        return None


def _verify_published_key(token: str, settings: Settings) -> Optional[dict]:
    base_url = (settings.supabase_url or "").rstrip("/")
    if not base_url:
        return None
    try:
        signing_key = _jwks_client(base_url).get_signing_key_from_jwt(token)
        return jwt.decode(token, signing_key.key, algorithms=["ES256"], **_claims_kwargs(settings))
    except (jwt.PyJWTError, OSError) as exc:
        logger.debug("ES256 verification failed: %s", exc)
        return None


def _verifiers(algorithm: str) -> list[Callable[[str, Settings], Optional[dict]]]:
    # Try the key type the header announces first; the JWKS path costs a fetch.
    if algorithm == "ES256":
        return [_verify_published_key, _verify_shared_secret]
    return [_verify_shared_secret, _verify_published_key]


def decode_access_token(token: str, settings: Settings) -> Optional[dict]:
    """Return verified claims, or None when no configured key accepts the token."""
    try:
        algorithm = jwt.get_unverified_header(token).get("alg", "")
    except jwt.DecodeError:
        return None
    for verify in _verifiers(algorithm):
        claims = verify(token, settings)
        if claims is not None:
            return claims
    return None


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Unauthorized")

    settings = get_settings()
    if not settings.supabase_jwt_secret and not settings.supabase_url:
        raise HTTPException(500, "SUPABASE_JWT_SECRET is not configured")

    claims = decode_access_token(authorization.split(" ", 1)[1].strip(), settings)
    owner_id = (claims or {}).get("sub")
    if not owner_id:
        raise HTTPException(401, "Unauthorized")

    return CurrentUser(id=owner_id, email=claims.get("email"))
