from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    Customer aggregate holder.

    total_spent_cents is a denormalized cache: completed transaction totals
    plus the net (total - refunded value) of partially refunded transactions.
    Fully refunded transactions contribute nothing.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_phone", "phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    phone = db.Column(db.String(32), nullable=True)

    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "total_spent_cents": self.total_spent_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
