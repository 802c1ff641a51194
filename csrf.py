import logging
from typing import Optional

from fastapi import Header, HTTPException
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings

CSRF_HEADER = "X-CSRF-Token"

logger = logging.getLogger(__name__)


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(get_settings().csrf_secret, salt="csrf-token")


def csrf_max_age_seconds() -> int:
    return get_settings().csrf_max_age_hours * 3600


def generate_csrf_token(user_id: int = 1) -> str:
    # Expiry comes from the signed timestamp itsdangerous embeds.
    return _serializer().dumps({"u": user_id})


def validate_csrf_token(
    token: str, user_id: int = 1, max_age_seconds: Optional[int] = None
) -> bool:
    if not token:
        return False
    if max_age_seconds is None:
        max_age_seconds = csrf_max_age_seconds()
    try:
        data = _serializer().loads(token, max_age=max_age_seconds)
    except SignatureExpired:
        logger.info("csrf_rejected: reason=expired")
        return False
    except BadSignature:
        logger.info("csrf_rejected: reason=bad_signature")
        return False
    if not isinstance(data, dict) or data.get("u") != user_id:
        logger.info("csrf_rejected: reason=wrong_user")
        return False
    return True


def require_csrf(x_csrf_token: str = Header(default="")) -> None:
    """FastAPI dependency guarding every mutating endpoint."""
    if not validate_csrf_token(x_csrf_token):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
