from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import AlreadyRefundedError, NotFoundError, OverRefundError, ValidationError
from ..extensions import db
from ..models import SaleItem, SaleTransaction
from ..models.inventory import MOVEMENT_RETURN
from ..models.sales import STATUS_COMPLETED, STATUS_PARTIALLY_REFUNDED, STATUS_REFUNDED
from ..money import format_cents, refunded_amount_cents
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry, unit_of_work
from .customer_service import CustomerService
from .stock_mutator import StockMutator
"""
Refund Engine invariants (authoritative)

- 0 <= refunded_quantity <= quantity for every sale item, also under
  concurrent refund requests against the same transaction.
- A refund batch is validated in full before anything is written; one bad
  request rejects the whole batch.
- Every refunded unit goes back to stock through a RETURN movement that
  references the transaction.
- Transaction status only moves forward:
    completed -> partially_refunded -> refunded
    completed -> refunded
- The customer's total_spent_cents is re-aggregated in the same unit of work.
"""

ALLOWED_TRANSITIONS = {
    STATUS_COMPLETED: {STATUS_COMPLETED, STATUS_PARTIALLY_REFUNDED, STATUS_REFUNDED},
    STATUS_PARTIALLY_REFUNDED: {STATUS_PARTIALLY_REFUNDED, STATUS_REFUNDED},
    STATUS_REFUNDED: {STATUS_REFUNDED},
}


@dataclass(frozen=True)
class RefundRequest:
    sale_item_id: int
    quantity: int


def sale_key(transaction_id: int) -> tuple:
    return ("sale", transaction_id)


def next_status(current: str, items) -> str:
    """Status implied by the items' refunded quantities; never moves backwards."""
    if items and all(item.is_fully_refunded for item in items):
        target = STATUS_REFUNDED
    elif any((item.refunded_quantity or 0) > 0 for item in items):
        target = STATUS_PARTIALLY_REFUNDED
    else:
        target = current

    allowed = ALLOWED_TRANSITIONS.get(current)
    if allowed is None:
        raise ValidationError(f"Unknown transaction status {current!r}", details={"status": current})
    if target not in allowed:
        return current
    return target


class RefundEngine:
    def __init__(self, mutator: StockMutator, customers: CustomerService, *, retry_attempts: int = 3):
        self.mutator = mutator
        self.customers = customers
        self.retry_attempts = retry_attempts

    def _variant_map(self, transaction_id: int) -> dict[int, int]:
        """sale_item_id -> variant_id; fixed at sale time, safe to read unlocked."""
        tx = db.session.get(SaleTransaction, transaction_id)
        if tx is None:
            raise NotFoundError(
                f"Transaction {transaction_id} not found",
                details={"transaction_id": transaction_id},
            )
        return {item.id: item.variant_id for item in tx.items}

    def _validate(self, tx: SaleTransaction, items: dict, requested: dict) -> None:
        if tx.status == STATUS_REFUNDED:
            raise AlreadyRefundedError(
                f"Transaction {tx.id} is already fully refunded",
                details={"transaction_id": tx.id},
            )
        for sale_item_id, qty in requested.items():
            item = items.get(sale_item_id)
            if item is None:
                raise NotFoundError(
                    f"Sale item {sale_item_id} not found in transaction {tx.id}",
                    details={"transaction_id": tx.id, "sale_item_id": sale_item_id},
                )
            if qty > item.refundable_quantity:
                raise OverRefundError(
                    f"Cannot refund {qty} units of sale item {sale_item_id}: "
                    f"only {item.refundable_quantity} refundable",
                    details={
                        "transaction_id": tx.id,
                        "sale_item_id": sale_item_id,
                        "requested_quantity": qty,
                        "quantity": item.quantity,
                        "refunded_quantity": item.refunded_quantity,
                    },
                )

    def refund_items(
        self,
        transaction_id: int,
        requests: list[RefundRequest],
        user_id: int | None = None,
    ) -> SaleTransaction:
        """
        Refund quantities of individual sale items.

        Raises:
            ValidationError: empty batch or non-positive quantity
            NotFoundError: unknown transaction or sale item
            AlreadyRefundedError: transaction already fully refunded
            OverRefundError: more than the refundable quantity requested
        """
        if not requests:
            raise ValidationError("No items to refund", details={"transaction_id": transaction_id})

        requested: dict[int, int] = {}
        for req in requests:
            if isinstance(req.quantity, bool) or not isinstance(req.quantity, int) or req.quantity <= 0:
                raise ValidationError(
                    "Refund quantity must be a positive integer",
                    details={"sale_item_id": req.sale_item_id, "quantity": req.quantity},
                )
            requested[req.sale_item_id] = requested.get(req.sale_item_id, 0) + req.quantity

        variant_by_item = self._variant_map(transaction_id)
        variant_ids = {variant_by_item[i] for i in requested if i in variant_by_item}

        def _op():
            with self.mutator.critical_section(variant_ids, extra_keys=[sale_key(transaction_id)]):
                with unit_of_work():
                    tx = (
                        lock_for_update(db.session.query(SaleTransaction).filter_by(id=transaction_id))
                        .populate_existing()
                        .first()
                    )
                    if tx is None:
                        raise NotFoundError(
                            f"Transaction {transaction_id} not found",
                            details={"transaction_id": transaction_id},
                        )
                    items = {
                        item.id: item
                        for item in lock_for_update(
                            db.session.query(SaleItem).filter_by(transaction_id=transaction_id)
                        ).populate_existing().all()
                    }

                    self._validate(tx, items, requested)

                    now = utcnow()
                    for sale_item_id, qty in requested.items():
                        item = items[sale_item_id]
                        item.refunded_quantity = (item.refunded_quantity or 0) + qty
                        item.refunded_at = now
                        reason = "Full Refund" if item.is_fully_refunded else "Partial Refund"

                        self.mutator.apply_locked(
                            item.variant_id,
                            MOVEMENT_RETURN,
                            qty,
                            reason=reason,
                            reference_id=tx.id,
                            user_id=user_id,
                            notes=f"Partial refund: {qty} of {item.quantity} units from transaction {tx.id}",
                        )

                    db.session.flush()
                    db.session.expire(tx, ["items"])
                    tx.status = next_status(tx.status, tx.items)

                    if tx.customer_id is not None:
                        self.customers.recompute_total_spent(tx.customer_id)

                    status = tx.status
            return status

        status = run_with_retry(_op, attempts=self.retry_attempts)
        tx = db.session.get(SaleTransaction, transaction_id)
        current_app.logger.info(
            "Refund committed: transaction_id=%s items=%s units=%s status=%s refunded_total=%s",
            transaction_id, len(requested), sum(requested.values()), status,
            format_cents(refunded_amount_cents(tx.items)),
        )
        return tx

    def refund_transaction(self, transaction_id: int, user_id: int | None = None) -> SaleTransaction:
        """Refund every remaining unit of every item in the transaction."""
        tx = db.session.get(SaleTransaction, transaction_id)
        if tx is None:
            raise NotFoundError(
                f"Transaction {transaction_id} not found",
                details={"transaction_id": transaction_id},
            )
        if tx.status == STATUS_REFUNDED:
            raise AlreadyRefundedError(
                f"Transaction {transaction_id} is already fully refunded",
                details={"transaction_id": transaction_id},
            )
        requests = [
            RefundRequest(sale_item_id=item.id, quantity=item.refundable_quantity)
            for item in tx.items
            if item.refundable_quantity > 0
        ]
        return self.refund_items(transaction_id, requests, user_id=user_id)
