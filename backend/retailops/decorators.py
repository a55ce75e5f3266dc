# Overview: Request authentication and role decorators for API routes.

from functools import wraps

from flask import g, request

from .responses import error_envelope
from .services import auth_service


def _is_authenticated() -> bool:
    return getattr(g, "principal", None) is not None


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.principal (services.access_service.Principal). Returns 401 when
    the header is missing, the signature is bad or expired, or the user is
    no longer active.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return error_envelope("Authentication required", 401)

        token = auth_header.split(" ", 1)[1].strip()
        principal = auth_service.principal_from_token(token)
        if principal is None:
            return error_envelope("Invalid or expired token", 401)

        g.principal = principal
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require one of the given roles. Must be applied after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return error_envelope("Authentication required", 401)

            if g.principal.role not in roles:
                return error_envelope(
                    "Permission denied",
                    403,
                    [{"required_roles": list(roles), "role": g.principal.role}],
                )

            return f(*args, **kwargs)

        return decorated_function
    return decorator
