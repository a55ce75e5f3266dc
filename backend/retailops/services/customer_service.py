from __future__ import annotations

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer
from . import transaction_store


ADDRESS_FIELDS = {
    "line1": "address_line1",
    "line2": "address_line2",
    "city": "city",
    "state": "state",
    "pincode": "pincode",
}


def _clean(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _apply_address(customer: Customer, address: dict | None) -> None:
    if not isinstance(address, dict):
        return
    for key, column in ADDRESS_FIELDS.items():
        if key in address:
            setattr(customer, column, _clean(address.get(key)))


def resolve_customer(customer_ref, *, store_id: int | None = None) -> Customer:
    """
    Resolve the customer a repair is opened for.

    customer_ref is either an integer id of an existing customer, or an
    object {name, email?, phone?, address?}. Objects are matched against
    existing customers by email (case-insensitive) or phone; on a match the
    name, phone and address are refreshed, otherwise a new customer is
    created. Does not commit.
    """
    if isinstance(customer_ref, bool):
        raise ValidationError.for_field("customer", "customer must be an id or an object")

    if isinstance(customer_ref, int):
        customer = transaction_store.get_customer(customer_ref)
        if customer is None:
            raise NotFoundError("Customer not found")
        return customer

    if not isinstance(customer_ref, dict):
        raise ValidationError.for_field("customer", "customer must be an id or an object")

    if customer_ref.get("id") is not None:
        try:
            return resolve_customer(int(customer_ref["id"]), store_id=store_id)
        except (TypeError, ValueError):
            raise ValidationError.for_field("customer.id", "customer.id must be an integer")

    name = _clean(customer_ref.get("name"))
    email = _clean(customer_ref.get("email"))
    phone = _clean(customer_ref.get("phone"))
    if email:
        email = email.lower()

    if not name:
        raise ValidationError.for_field("customer.name", "Customer name is required")
    if not email and not phone:
        raise ValidationError.for_field("customer", "Customer email or phone is required")

    customer = transaction_store.find_customer_by_contact(email, phone)
    if customer is None:
        customer = Customer(name=name, email=email, phone=phone, store_id=store_id)
        _apply_address(customer, customer_ref.get("address"))
        db.session.add(customer)
        db.session.flush()
        return customer

    customer.name = name
    if phone:
        customer.phone = phone
    if email and not customer.email:
        customer.email = email
    if customer.store_id is None:
        customer.store_id = store_id
    customer.is_active = True
    _apply_address(customer, customer_ref.get("address"))
    return customer
