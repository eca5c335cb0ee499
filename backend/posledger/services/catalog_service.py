# Overview: Catalog lookups and variant lifecycle (creation with initial stock, soft-archive).

from __future__ import annotations

from dataclasses import dataclass

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, ProductVariant
from ..models.inventory import MOVEMENT_RESTOCK
from ..money import MAX_PRICE_CENTS
from ..time_utils import utcnow
from .concurrency import run_with_retry, unit_of_work
from .stock_mutator import MAX_QUANTITY, StockMutator


@dataclass(frozen=True)
class VariantSpec:
    sku: str
    price_cents: int
    initial_stock: int = 0
    color: str | None = None
    size: str | None = None
    reorder_point: int | None = None


class CatalogService:
    """
    Read-only catalog access for the engines, plus the creation path used by
    seed/import tooling. A new variant starts at stock 0; any initial stock
    is recorded as a RESTOCK movement in the same unit of work.
    """

    def __init__(self, mutator: StockMutator, *, default_reorder_point: int = 10):
        self.mutator = mutator
        self.default_reorder_point = default_reorder_point

    def get_product(self, product_id: int) -> Product:
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        return product

    def get_variant(self, variant_id: int) -> ProductVariant:
        variant = db.session.get(ProductVariant, variant_id)
        if variant is None:
            raise NotFoundError(f"Variant {variant_id} not found", details={"variant_id": variant_id})
        return variant

    def get_variant_by_sku(self, sku: str) -> ProductVariant:
        variant = db.session.query(ProductVariant).filter_by(sku=sku.strip()).first()
        if variant is None:
            raise NotFoundError(f"Variant with SKU {sku} not found", details={"sku": sku})
        return variant

    def _validate_spec(self, spec: VariantSpec) -> None:
        if not spec.sku or not spec.sku.strip():
            raise ValidationError("Variant SKU is required")
        if not isinstance(spec.price_cents, int) or spec.price_cents < 0:
            raise ValidationError("price_cents must be an integer >= 0", details={"sku": spec.sku})
        if spec.price_cents > MAX_PRICE_CENTS:
            raise ValidationError(f"price_cents cannot exceed {MAX_PRICE_CENTS}", details={"sku": spec.sku})
        if not isinstance(spec.initial_stock, int) or spec.initial_stock < 0:
            raise ValidationError("initial_stock must be an integer >= 0", details={"sku": spec.sku})
        if spec.initial_stock > MAX_QUANTITY:
            raise ValidationError(f"initial_stock cannot exceed {MAX_QUANTITY}", details={"sku": spec.sku})
        if spec.reorder_point is not None and spec.reorder_point < 0:
            raise ValidationError("reorder_point must be >= 0", details={"sku": spec.sku})

    def create_product(
        self,
        *,
        name: str,
        base_sku: str,
        variants: list[VariantSpec],
        description: str | None = None,
        user_id: int | None = None,
    ) -> Product:
        """Create a product and its variants, restocking any initial quantities."""
        name = (name or "").strip()
        base_sku = (base_sku or "").strip()
        if not name:
            raise ValidationError("Product name is required")
        if not base_sku:
            raise ValidationError("base_sku is required")
        if not variants:
            raise ValidationError("A product needs at least one variant")

        seen = set()
        for spec in variants:
            self._validate_spec(spec)
            sku = spec.sku.strip()
            if sku in seen:
                raise ValidationError(f"Duplicate SKU {sku} in request", details={"sku": sku})
            seen.add(sku)

        def _op():
            with unit_of_work():
                if db.session.query(Product.id).filter_by(base_sku=base_sku).first():
                    raise ValidationError(f"Product SKU {base_sku} already exists", details={"base_sku": base_sku})
                taken = db.session.query(ProductVariant.sku).filter(ProductVariant.sku.in_(seen)).all()
                if taken:
                    raise ValidationError(
                        "Variant SKU already exists",
                        details={"skus": sorted(row[0] for row in taken)},
                    )

                product = Product(name=name, base_sku=base_sku, description=description)
                db.session.add(product)
                db.session.flush()

                for spec in variants:
                    variant = ProductVariant(
                        product_id=product.id,
                        sku=spec.sku.strip(),
                        color=spec.color,
                        size=spec.size,
                        price_cents=spec.price_cents,
                        stock=0,
                        reorder_point=(
                            spec.reorder_point if spec.reorder_point is not None else self.default_reorder_point
                        ),
                    )
                    db.session.add(variant)
                    db.session.flush()

                    if spec.initial_stock > 0:
                        # Nobody else can see this variant before commit, no keyed lock needed
                        self.mutator.apply_locked(
                            variant.id,
                            MOVEMENT_RESTOCK,
                            spec.initial_stock,
                            reason="Initial stock",
                            user_id=user_id,
                            variant=variant,
                        )
            return product

        return run_with_retry(_op)

    def archive_variant(self, variant_id: int) -> ProductVariant:
        """Soft-archive: archived variants keep their ledger but cannot be sold."""
        variant = self.get_variant(variant_id)
        if not variant.is_archived:
            variant.is_archived = True
            variant.archived_at = utcnow()
            db.session.commit()
        return variant

    def list_low_stock(self, *, include_archived: bool = False, limit: int = 200) -> list[ProductVariant]:
        """Variants at or below their reorder point, lowest stock first."""
        q = db.session.query(ProductVariant).filter(ProductVariant.stock <= ProductVariant.reorder_point)
        if not include_archived:
            q = q.filter(ProductVariant.is_archived.is_(False))
        return q.order_by(ProductVariant.stock.asc(), ProductVariant.id.asc()).limit(limit).all()
