from __future__ import annotations

from dataclasses import dataclass

from ..errors import ForbiddenError, NotFoundError
from ..models import ROLE_ADMIN, User
from . import transaction_store


@dataclass(frozen=True)
class Principal:
    """Requesting user as seen by the service layer."""
    user_id: int | None
    username: str
    role: str
    store_id: int | None = None

    @property
    def is_global(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(user_id=user.id, username=user.username, role=user.role, store_id=user.store_id)


# Used by CLI commands and tests that act outside a request
SYSTEM_PRINCIPAL = Principal(user_id=None, username="system", role=ROLE_ADMIN)


def resolve_store_scope(principal: Principal, requested_store_id: int | None) -> int | None:
    """
    Store filter to apply for this principal.

    Global principals get what they asked for (None = all stores).
    Everyone else is pinned to their own store; a requested store_id is
    ignored rather than widening or switching the scope.
    """
    if principal.is_global:
        return requested_store_id
    if principal.store_id is None:
        raise ForbiddenError("User is not assigned to a store")
    return principal.store_id


def ensure_store_access(principal: Principal, store_id: int | None) -> None:
    """Raise ForbiddenError unless the principal may act on store_id."""
    if principal.is_global:
        return
    if principal.store_id is None or store_id != principal.store_id:
        raise ForbiddenError("Access to this store is not permitted")


def resolve_target_store(principal: Principal, requested_store_id: int | None) -> int:
    """
    Store a new record is created in.

    Non-global principals default to their own store; global principals must
    name one. The store must exist.
    """
    store_id = requested_store_id
    if store_id is None:
        store_id = principal.store_id
    if store_id is None:
        raise ForbiddenError("A store_id is required")
    ensure_store_access(principal, store_id)
    if transaction_store.get_store(store_id) is None:
        raise NotFoundError("Store not found")
    return store_id
