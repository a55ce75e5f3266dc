# Overview: Signed bearer tokens naming a user id.

"""
Token Service

Credential checks live in the external auth service. This backend only needs
to know which user is calling, so tokens are itsdangerous-signed payloads
({"uid": <user id>}) keyed by SECRET_KEY and time-limited by
TOKEN_MAX_AGE_SECONDS (0 disables expiry).

A valid signature is not enough: the user must still exist and be active,
so deactivating an account revokes every token issued to it.
"""

from __future__ import annotations

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from ..extensions import db
from ..models import User
from .access_service import Principal


TOKEN_SALT = "retailops-api-token"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_token(user: User) -> str:
    return _serializer().dumps({"uid": user.id})


def principal_from_token(token: str) -> Principal | None:
    """Return the Principal for a token, or None if it is invalid/expired."""
    max_age = int(current_app.config.get("TOKEN_MAX_AGE_SECONDS") or 0)
    try:
        payload = _serializer().loads(token, max_age=max_age or None)
    except SignatureExpired:
        current_app.logger.info("Rejected expired API token")
        return None
    except BadSignature:
        return None

    user_id = payload.get("uid") if isinstance(payload, dict) else None
    if not isinstance(user_id, int):
        return None

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return Principal.from_user(user)
