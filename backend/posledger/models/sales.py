from __future__ import annotations

from ..extensions import db
from ..money import DISCOUNT_NONE, refunded_amount_cents
from ..time_utils import to_utc_z, utcnow


STATUS_COMPLETED = "completed"
STATUS_PARTIALLY_REFUNDED = "partially_refunded"
STATUS_REFUNDED = "refunded"

TRANSACTION_STATUSES = (STATUS_COMPLETED, STATUS_PARTIALLY_REFUNDED, STATUS_REFUNDED)


class SaleTransaction(db.Model):
    """
    One checkout event.

    Created atomically with its items and the SALE movements it triggers.
    Afterwards only the RefundEngine touches it (status + item refund fields).
    Never deleted.

    STATUS: completed -> partially_refunded -> refunded (monotonic).
    """
    __tablename__ = "sale_transactions"
    __table_args__ = (
        db.Index("ix_sale_tx_status_created", "status", "created_at"),
        db.Index("ix_sale_tx_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(128), nullable=True)

    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    status = db.Column(db.String(24), nullable=False, default=STATUS_COMPLETED, index=True)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "SaleItem",
        back_populates="transaction",
        order_by="SaleItem.id",
        lazy=True,
    )
    customer = db.relationship("Customer", backref=db.backref("transactions", lazy="dynamic"))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def refunded_amount_cents(self) -> int:
        return refunded_amount_cents(self.items)

    @property
    def net_total_cents(self) -> int:
        return self.total_cents - self.refunded_amount_cents

    def __repr__(self) -> str:
        return f"<SaleTransaction id={self.id} status={self.status} total_cents={self.total_cents}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "payment_method": self.payment_method,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "refunded_amount_cents": self.refunded_amount_cents,
            "net_total_cents": self.net_total_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    One line of a sale transaction.

    PRICING: price_cents is the variant price at sale time; final_price_cents
    is the unit price after the line discount; line_total_cents is
    final_price_cents * quantity.

    discount_value is basis points for PERCENTAGE, cents for FIXED_AMOUNT.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint(
            "refunded_quantity >= 0 AND refunded_quantity <= quantity",
            name="ck_sale_items_refund_bounds",
        ),
        db.Index("ix_sale_items_tx_variant", "transaction_id", "variant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)

    discount_type = db.Column(db.String(16), nullable=False, default=DISCOUNT_NONE)
    discount_value = db.Column(db.Integer, nullable=False, default=0)
    discount_reason = db.Column(db.String(255), nullable=True)
    discount_applied_by_user_id = db.Column(db.Integer, nullable=True)
    discount_applied_at = db.Column(db.DateTime(timezone=True), nullable=True)

    final_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    refunded_quantity = db.Column(db.Integer, nullable=False, default=0)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    transaction = db.relationship("SaleTransaction", back_populates="items")
    variant = db.relationship("ProductVariant")
    product = db.relationship("Product")

    @property
    def refundable_quantity(self) -> int:
        return self.quantity - (self.refunded_quantity or 0)

    @property
    def is_fully_refunded(self) -> bool:
        return (self.refunded_quantity or 0) == self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "discount_reason": self.discount_reason,
            "discount_applied_by_user_id": self.discount_applied_by_user_id,
            "discount_applied_at": to_utc_z(self.discount_applied_at) if self.discount_applied_at else None,
            "final_price_cents": self.final_price_cents,
            "line_total_cents": self.line_total_cents,
            "refunded_quantity": self.refunded_quantity,
            "refundable_quantity": self.refundable_quantity,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "created_at": to_utc_z(self.created_at),
        }
