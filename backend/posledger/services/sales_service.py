"""
Sale Transaction Engine

Commits a cart of line items as one atomic sale:
- prices every line (discounts resolved to a final unit price),
- totals the cart (subtotal, tax, total; integer cents, half-up),
- writes the SaleTransaction + SaleItems,
- decrements stock through the StockMutator (one SALE movement per line),
- adds the total to the customer's total_spent_cents.

Either everything above is committed or nothing is. Stock availability is
checked inside the variants' critical section, against the quantity summed
across all lines of the cart for each variant.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, SaleItem, SaleTransaction
from ..models.inventory import MOVEMENT_SALE
from ..models.sales import STATUS_COMPLETED, TRANSACTION_STATUSES
from ..money import (
    BPS_DENOMINATOR,
    DISCOUNT_NONE,
    DISCOUNT_PERCENTAGE,
    DISCOUNT_TYPES,
    MAX_PRICE_CENTS,
    final_unit_price_cents,
    format_cents,
    tax_cents,
)
from ..time_utils import normalize_datetime, utcnow
from .concurrency import run_with_retry, unit_of_work
from .customer_service import CustomerService
from .stock_mutator import MAX_QUANTITY, StockMutator


@dataclass(frozen=True)
class Discount:
    """Line discount. value is basis points for PERCENTAGE, cents for FIXED_AMOUNT."""
    type: str
    value: int
    reason: str | None = None
    applied_by_user_id: int | None = None


@dataclass(frozen=True)
class CartItem:
    variant_id: int
    quantity: int
    discount: Discount | None = None


def _validate_discount(discount: Discount, variant_id: int) -> None:
    if discount.type not in DISCOUNT_TYPES:
        raise ValidationError(
            f"Unknown discount type {discount.type!r}",
            details={"variant_id": variant_id, "discount_type": discount.type},
        )
    if isinstance(discount.value, bool) or not isinstance(discount.value, int) or discount.value < 0:
        raise ValidationError(
            "Discount value must be a non-negative integer",
            details={"variant_id": variant_id, "discount_value": discount.value},
        )
    if discount.value > MAX_PRICE_CENTS:
        raise ValidationError(
            f"Discount value cannot exceed {MAX_PRICE_CENTS}",
            details={"variant_id": variant_id, "discount_value": discount.value},
        )
    if discount.type == DISCOUNT_PERCENTAGE and discount.value > BPS_DENOMINATOR:
        raise ValidationError(
            "Percentage discount cannot exceed 100%",
            details={"variant_id": variant_id, "discount_value": discount.value},
        )


def validate_cart(items: list[CartItem]) -> None:
    if not items:
        raise ValidationError("No items provided")
    for item in items:
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
            raise ValidationError(
                "Quantity must be a positive integer",
                details={"variant_id": item.variant_id, "quantity": item.quantity},
            )
        if item.quantity > MAX_QUANTITY:
            raise ValidationError(
                f"Quantity cannot exceed {MAX_QUANTITY}",
                details={"variant_id": item.variant_id, "quantity": item.quantity},
            )
        if item.discount is not None:
            _validate_discount(item.discount, item.variant_id)


class SaleEngine:
    def __init__(
        self,
        mutator: StockMutator,
        customers: CustomerService,
        *,
        tax_rate_bps: int = 0,
        payment_methods=("cash", "card"),
        default_payment_method: str = "cash",
        retry_attempts: int = 3,
    ):
        self.mutator = mutator
        self.customers = customers
        self.tax_rate_bps = tax_rate_bps
        self.payment_methods = tuple(payment_methods)
        self.default_payment_method = default_payment_method
        self.retry_attempts = retry_attempts

    def _check_availability(self, variants: dict, requested: dict) -> None:
        insufficient = []
        for variant_id, qty in requested.items():
            variant = variants[variant_id]
            if variant.stock < qty:
                insufficient.append({
                    "variant_id": variant_id,
                    "sku": variant.sku,
                    "requested_quantity": qty,
                    "available": variant.stock,
                })
        if insufficient:
            first = insufficient[0]
            raise InsufficientStockError(
                f"Insufficient stock for variant {first['variant_id']} ({first['sku']}): "
                f"requested {first['requested_quantity']}, available {first['available']}",
                details={"variant_id": first["variant_id"], "items": insufficient},
            )

    def _build_item(self, tx: SaleTransaction, cart_item: CartItem, variant, now) -> SaleItem:
        discount = cart_item.discount
        discount_type = discount.type if discount else DISCOUNT_NONE
        discount_value = discount.value if discount else 0

        final_price = final_unit_price_cents(variant.price_cents, discount_type, discount_value)
        has_discount = discount_type != DISCOUNT_NONE

        return SaleItem(
            transaction_id=tx.id,
            product_id=variant.product_id,
            variant_id=variant.id,
            quantity=cart_item.quantity,
            price_cents=variant.price_cents,
            discount_type=discount_type,
            discount_value=discount_value,
            discount_reason=discount.reason if has_discount else None,
            discount_applied_by_user_id=discount.applied_by_user_id if has_discount else None,
            discount_applied_at=now if has_discount else None,
            final_price_cents=final_price,
            line_total_cents=final_price * cart_item.quantity,
            refunded_quantity=0,
            created_at=now,
        )

    def create_sale(
        self,
        items: list[CartItem],
        payment_method: str | None = None,
        customer_id: int | None = None,
        user_id: int | None = None,
        *,
        customer_name: str | None = None,
    ) -> SaleTransaction:
        """
        Validate and commit a multi-item sale.

        Raises:
            ValidationError: empty cart, bad quantity/discount/payment method,
                archived variant
            NotFoundError: unknown variant or customer
            InsufficientStockError: a variant lacks the requested quantity;
                nothing is persisted
        """
        validate_cart(items)

        payment_method = payment_method or self.default_payment_method
        if payment_method not in self.payment_methods:
            raise ValidationError(
                f"Payment method must be one of {', '.join(self.payment_methods)}",
                details={"payment_method": payment_method},
            )

        requested: dict[int, int] = {}
        for item in items:
            requested[item.variant_id] = requested.get(item.variant_id, 0) + item.quantity

        def _op():
            with self.mutator.critical_section(requested.keys()):
                with unit_of_work():
                    variants = {}
                    for variant_id in sorted(requested):
                        variant = self.mutator.load_locked(variant_id)
                        if variant.is_archived:
                            raise ValidationError(
                                f"Variant {variant_id} ({variant.sku}) is archived",
                                details={"variant_id": variant_id},
                            )
                        variants[variant_id] = variant

                    if customer_id is not None and db.session.get(Customer, customer_id) is None:
                        raise NotFoundError(
                            f"Customer {customer_id} not found",
                            details={"customer_id": customer_id},
                        )

                    self._check_availability(variants, requested)

                    now = utcnow()
                    tx = SaleTransaction(
                        user_id=user_id,
                        customer_id=customer_id,
                        customer_name=customer_name,
                        payment_method=payment_method,
                        status=STATUS_COMPLETED,
                        subtotal_cents=0,
                        tax_cents=0,
                        total_cents=0,
                        created_at=now,
                    )
                    db.session.add(tx)
                    db.session.flush()

                    sale_items = []
                    for cart_item in items:
                        sale_item = self._build_item(tx, cart_item, variants[cart_item.variant_id], now)
                        db.session.add(sale_item)
                        sale_items.append(sale_item)

                    subtotal = sum(si.line_total_cents for si in sale_items)
                    tax = tax_cents(subtotal, self.tax_rate_bps)
                    tx.subtotal_cents = subtotal
                    tx.tax_cents = tax
                    tx.total_cents = subtotal + tax
                    db.session.flush()

                    for sale_item in sale_items:
                        self.mutator.apply_locked(
                            sale_item.variant_id,
                            MOVEMENT_SALE,
                            -sale_item.quantity,
                            reference_id=tx.id,
                            user_id=user_id,
                            notes=f"Sale transaction {tx.id}",
                            variant=variants[sale_item.variant_id],
                        )

                    if customer_id is not None:
                        self.customers.increment_total_spent(customer_id, tx.total_cents)

                    tx_id = tx.id
            return tx_id

        tx_id = run_with_retry(_op, attempts=self.retry_attempts)
        tx = self.get_sale(tx_id)
        current_app.logger.info(
            "Sale committed: transaction_id=%s items=%s total=%s customer_id=%s",
            tx.id, len(tx.items), format_cents(tx.total_cents), tx.customer_id,
        )
        return tx

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_sale(self, transaction_id: int) -> SaleTransaction:
        tx = db.session.get(SaleTransaction, transaction_id)
        if tx is None:
            raise NotFoundError(
                f"Transaction {transaction_id} not found",
                details={"transaction_id": transaction_id},
            )
        return tx

    def list_sales(
        self,
        *,
        start=None,
        end=None,
        status: str | None = None,
        customer_id: int | None = None,
        limit: int = 200,
    ) -> list[SaleTransaction]:
        """Transactions newest first, filtered by inclusive date range / status / customer."""
        if status is not None and status not in TRANSACTION_STATUSES:
            raise ValidationError(f"Unknown status {status!r}", details={"status": status})
        try:
            start_dt = normalize_datetime(start)
            end_dt = normalize_datetime(end)
        except ValueError:
            raise ValidationError("start and end must be ISO-8601 datetimes")

        q = db.session.query(SaleTransaction)
        if start_dt is not None:
            q = q.filter(SaleTransaction.created_at >= start_dt)
        if end_dt is not None:
            q = q.filter(SaleTransaction.created_at <= end_dt)
        if status is not None:
            q = q.filter(SaleTransaction.status == status)
        if customer_id is not None:
            q = q.filter(SaleTransaction.customer_id == customer_id)

        limit = max(1, min(int(limit), 1000))
        return q.order_by(SaleTransaction.created_at.desc(), SaleTransaction.id.desc()).limit(limit).all()
