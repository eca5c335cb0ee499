from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..errors import ImmutableMovementError
from ..time_utils import to_utc_z, utcnow


MOVEMENT_RESTOCK = "RESTOCK"
MOVEMENT_SALE = "SALE"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_RETURN = "RETURN"
MOVEMENT_SHRINKAGE = "SHRINKAGE"

MOVEMENT_KINDS = (
    MOVEMENT_RESTOCK,
    MOVEMENT_SALE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN,
    MOVEMENT_SHRINKAGE,
)


class Product(db.Model):
    """
    Catalog product. Sellable units are its variants.

    Products are never deleted once variants carry movements; archive instead.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    base_sku = db.Column(db.String(64), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    is_archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    variants = db.relationship(
        "ProductVariant",
        back_populates="product",
        order_by="ProductVariant.id",
        lazy=True,
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} base_sku={self.base_sku!r} name={self.name!r}>"

    def to_dict(self, include_variants: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "base_sku": self.base_sku,
            "description": self.description,
            "is_archived": self.is_archived,
            "archived_at": to_utc_z(self.archived_at) if self.archived_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_variants:
            data["variants"] = [v.to_dict() for v in self.variants]
        return data


class ProductVariant(db.Model):
    """
    A sellable unit (color/size/SKU combination) of a product.

    STOCK: `stock` is a cached value. It is written only by the StockMutator,
    in the same DB transaction as the StockMovement that explains the change.
    The ledger replay (see Reconciler) must always reproduce it.

    version_id gives optimistic locking against writers in other processes;
    in-process writers are already serialized per variant.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_variants_stock_non_negative"),
        db.Index("ix_variants_product_stock", "product_id", "stock"),
        db.Index("ix_variants_stock_reorder", "stock", "reorder_point"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    color = db.Column(db.String(64), nullable=True)
    size = db.Column(db.String(32), nullable=True)

    price_cents = db.Column(db.Integer, nullable=False)

    stock = db.Column(db.Integer, nullable=False, default=0)
    reorder_point = db.Column(db.Integer, nullable=False, default=10)
    last_restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product", back_populates="variants")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.reorder_point

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} sku={self.sku!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "color": self.color,
            "size": self.size,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "reorder_point": self.reorder_point,
            "is_low_stock": self.is_low_stock,
            "last_restocked_at": to_utc_z(self.last_restocked_at) if self.last_restocked_at else None,
            "is_archived": self.is_archived,
            "archived_at": to_utc_z(self.archived_at) if self.archived_at else None,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Immutable stock ledger entry.

    INVARIANT: previous_stock + quantity_delta == new_stock, unless the sum
    would be negative. Then new_stock is clamped to 0 and
    clamped_shortfall = new_stock - (previous_stock + quantity_delta) > 0
    records the units the ledger could not account for.

    IMMUTABLE: rows are inserted once and never updated or deleted
    (enforced by the mapper events below).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_movements_variant_created", "variant_id", "created_at"),
        db.Index("ix_movements_variant_type", "variant_id", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    clamped_shortfall = db.Column(db.Integer, nullable=False, default=0)

    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    reference_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    variant = db.relationship("ProductVariant", backref=db.backref("movements", lazy="dynamic"))

    @property
    def is_clamped(self) -> bool:
        return bool(self.clamped_shortfall)

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} variant_id={self.variant_id} type={self.type} "
            f"delta={self.quantity_delta} {self.previous_stock}->{self.new_stock}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "clamped_shortfall": self.clamped_shortfall,
            "reason": self.reason,
            "notes": self.notes,
            "reference_id": self.reference_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ImmutableMovementError(
        "Stock movements are immutable",
        details={"movement_id": target.id},
    )


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise ImmutableMovementError(
        "Stock movements are immutable and cannot be deleted",
        details={"movement_id": target.id},
    )
