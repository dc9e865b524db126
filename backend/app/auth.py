import base64
import hashlib
import hmac
import os
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from fastapi import Header, HTTPException, status

from app.settings import read_bool_env, read_positive_int_env

TOKEN_TTL_HOURS = read_positive_int_env("AUTH_TOKEN_TTL_HOURS", 24)
AUTH_REQUIRED = read_bool_env("AUTH_REQUIRED", False)
DEMO_PASSWORD = os.getenv("AUTH_DEMO_PASSWORD", "casedesk-demo")
_AUTH_SECRET = os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me").encode("utf-8")


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def _sign(payload: bytes) -> bytes:
    return hmac.new(_AUTH_SECRET, payload, hashlib.sha256).digest()


def create_access_token(user_id: str) -> Tuple[str, str]:
    """Issue a signed ``<payload>.<signature>`` token for ``user_id``."""
    expires = datetime.now(timezone.utc) + timedelta(hours=TOKEN_TTL_HOURS)
    payload = f"{user_id}|{int(expires.timestamp())}".encode("utf-8")
    return f"{_encode_segment(payload)}.{_encode_segment(_sign(payload))}", expires.isoformat()


def verify_access_token(token: str) -> Optional[str]:
    payload_segment, _, signature_segment = token.partition(".")
    if not payload_segment or not signature_segment:
        return None
    try:
        payload = _decode_segment(payload_segment)
        signature = _decode_segment(signature_segment)
        user_id, expires_at = payload.decode("utf-8").rsplit("|", 1)
        expires_ts = int(expires_at)
    except ValueError:
        return None
    if not hmac.compare_digest(signature, _sign(payload)):
        return None
    if datetime.now(timezone.utc).timestamp() > expires_ts:
        return None
    return user_id or None


def actor_from_authorization(authorization: Optional[str]) -> Optional[str]:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return verify_access_token(token.strip())


def require_authenticated_user(authorization: Optional[str] = Header(default=None)) -> str:
    user_id = actor_from_authorization(authorization)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing bearer token")
    return user_id


def assert_actor_authorized(actor_user_id: str, authorization: Optional[str] = None) -> None:
    """Reject requests acting for another nurse.

    Anonymous requests pass unless ``AUTH_REQUIRED`` is set.
    """
    token_user = actor_from_authorization(authorization)
    if not token_user:
        if AUTH_REQUIRED:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
        return
    if token_user != actor_user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token user does not match actor user")
