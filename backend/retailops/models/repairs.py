from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Repair(db.Model):
    """
    Repair ticket.

    total_cost_cents is always repair + parts + labor. Every cost change
    appends a RepairPriceSnapshot and every status change appends a
    RepairTimelineEntry; neither history is ever rewritten.
    """
    __tablename__ = "repairs"
    __table_args__ = (
        db.Index("ix_repairs_store_received", "store_id", "received_at"),
        db.Index("ix_repairs_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    ticket_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Device descriptor
    device_type = db.Column(db.String(64), nullable=False)
    brand = db.Column(db.String(128), nullable=False)
    model = db.Column(db.String(128), nullable=False)
    serial_number = db.Column(db.String(128), nullable=True)

    issue_description = db.Column(db.Text, nullable=False)
    diagnosis = db.Column(db.Text, nullable=True)

    # Cost breakdown (cents)
    repair_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    parts_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    labor_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(32), nullable=False, default="received", index=True)
    priority = db.Column(db.String(16), nullable=False, default="medium")

    technician = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    estimated_completion = db.Column(db.DateTime(timezone=True), nullable=True)
    warranty_period_days = db.Column(db.Integer, nullable=False, default=30)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("repairs", lazy=True), lazy="joined")
    store = db.relationship("Store", backref=db.backref("repairs", lazy=True))
    price_history = db.relationship(
        "RepairPriceSnapshot",
        back_populates="repair",
        order_by="RepairPriceSnapshot.id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    timeline = db.relationship(
        "RepairTimelineEntry",
        back_populates="repair",
        order_by="RepairTimelineEntry.id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def device_label(self) -> str:
        return " ".join(part for part in (self.device_type, self.brand, self.model) if part).strip()

    def cost_breakdown(self) -> dict:
        return {
            "repair_cost_cents": self.repair_cost_cents,
            "parts_cost_cents": self.parts_cost_cents,
            "labor_cost_cents": self.labor_cost_cents,
            "total_cost_cents": self.total_cost_cents,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_number": self.ticket_number,
            "customer_id": self.customer_id,
            "customer": self.customer.to_dict() if self.customer else None,
            "store_id": self.store_id,
            "device": {
                "device_type": self.device_type,
                "brand": self.brand,
                "model": self.model,
                "serial_number": self.serial_number,
            },
            "issue_description": self.issue_description,
            "diagnosis": self.diagnosis,
            **self.cost_breakdown(),
            "status": self.status,
            "priority": self.priority,
            "technician": self.technician,
            "notes": self.notes,
            "estimated_completion": to_utc_z(self.estimated_completion) if self.estimated_completion else None,
            "warranty_period_days": self.warranty_period_days,
            "received_at": to_utc_z(self.received_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
            "price_history": [entry.to_dict() for entry in self.price_history],
            "timeline": [entry.to_dict() for entry in self.timeline],
        }

    def tracking_dict(self) -> dict:
        """Customer-facing subset used by the public tracking lookup."""
        return {
            "ticket_number": self.ticket_number,
            "status": self.status,
            "device": self.device_label or "N/A",
            "issue": self.issue_description or "No description provided",
            "received_at": to_utc_z(self.received_at),
            "estimated_completion": to_utc_z(self.estimated_completion) if self.estimated_completion else None,
            "total_cost_cents": self.total_cost_cents,
        }


class RepairPriceSnapshot(db.Model):
    """
    Append-only cost breakdown snapshot.

    IMMUTABLE: Rows are never updated or deleted.
    """
    __tablename__ = "repair_price_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    repair_id = db.Column(db.Integer, db.ForeignKey("repairs.id"), nullable=False, index=True)

    repair_cost_cents = db.Column(db.Integer, nullable=False)
    parts_cost_cents = db.Column(db.Integer, nullable=False)
    labor_cost_cents = db.Column(db.Integer, nullable=False)
    total_cost_cents = db.Column(db.Integer, nullable=False)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_by = db.Column(db.String(128), nullable=True)

    repair = db.relationship("Repair", back_populates="price_history")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "repair_cost_cents": self.repair_cost_cents,
            "parts_cost_cents": self.parts_cost_cents,
            "labor_cost_cents": self.labor_cost_cents,
            "total_cost_cents": self.total_cost_cents,
            "updated_at": to_utc_z(self.updated_at),
            "updated_by": self.updated_by,
        }


class RepairTimelineEntry(db.Model):
    """
    Ordered log of status changes and customer messages.

    entry_type is "status" for transitions and "message" for custom updates.
    Only the notified flag is written after insert, once delivery settles.
    """
    __tablename__ = "repair_timeline"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    repair_id = db.Column(db.Integer, db.ForeignKey("repairs.id"), nullable=False, index=True)

    entry_type = db.Column(db.String(16), nullable=False, default="status")
    status = db.Column(db.String(32), nullable=False)
    note = db.Column(db.Text, nullable=True)
    actor = db.Column(db.String(128), nullable=True)
    notified = db.Column(db.Boolean, nullable=False, default=False)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    repair = db.relationship("Repair", back_populates="timeline")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entry_type": self.entry_type,
            "status": self.status,
            "note": self.note,
            "actor": self.actor,
            "notified": self.notified,
            "occurred_at": to_utc_z(self.occurred_at),
        }
