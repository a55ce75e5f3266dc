from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Sale(db.Model):
    """
    Sale document.

    total_amount_cents is fixed when the sale is created and never rewritten;
    refunds are recorded as separate SaleRefund rows and summed into
    refunded_total_cents. Every refund therefore updates the sale row, so
    version_id guards status and refund writes alike against lost updates
    (optimistic locking).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_store_created", "store_id", "created_at"),
        db.Index("ix_sales_store_status_created", "store_id", "status", "created_at"),
        db.CheckConstraint(
            "refunded_total_cents >= 0 AND refunded_total_cents <= total_amount_cents",
            name="ck_sales_refunded_within_total",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    total_amount_cents = db.Column(db.Integer, nullable=False)
    refunded_total_cents = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    payment_method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    notes = db.Column(db.Text, nullable=True)

    # Soft delete: deactivated sales disappear from reads and reports
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deactivated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.position",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    refunds = db.relationship(
        "SaleRefund",
        back_populates="sale",
        order_by="SaleRefund.id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def refundable_balance_cents(self) -> int:
        return self.total_amount_cents - (self.refunded_total_cents or 0)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "customer_id": self.customer_id,
            "store_id": self.store_id,
            "total_amount_cents": self.total_amount_cents,
            "refunded_total_cents": self.refunded_total_cents,
            "refundable_balance_cents": self.refundable_balance_cents,
            "payment_method": self.payment_method,
            "status": self.status,
            "notes": self.notes,
            "is_active": self.is_active,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
            "refunds": [refund.to_dict() for refund in self.refunds],
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    One line of a sale: either a catalog line (product_id) or a manual line
    (product_name). The check constraint rejects rows carrying both or neither.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint(
            "(item_type = 'catalog' AND product_id IS NOT NULL AND product_name IS NULL)"
            " OR (item_type = 'manual' AND product_id IS NULL AND product_name IS NOT NULL)",
            name="ck_sale_items_variant",
        ),
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    item_type = db.Column(db.String(16), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=True)
    serial_number = db.Column(db.String(128), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product", lazy="joined")

    @property
    def display_name(self) -> str:
        if self.product is not None:
            return self.product.name
        return self.product_name or "Unknown Product"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "item_type": self.item_type,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "name": self.display_name,
            "serial_number": self.serial_number,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class SaleRefund(db.Model):
    """
    Append-only refund record.

    IMMUTABLE: Rows are never updated or deleted; the sale's refunded total
    is always the sum of its refund rows.
    """
    __tablename__ = "sale_refunds"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_sale_refunds_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    processed_by = db.Column(db.String(128), nullable=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", back_populates="refunds")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "processed_by": self.processed_by,
            "processed_at": to_utc_z(self.processed_at),
        }
