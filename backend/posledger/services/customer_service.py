# Overview: Customer aggregate store; keeps total_spent_cents net of refunds.

from __future__ import annotations

from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, SaleTransaction
from ..models.sales import STATUS_COMPLETED, STATUS_PARTIALLY_REFUNDED
from ..money import net_revenue_cents
from .concurrency import lock_for_update


class CustomerService:
    """
    total_spent_cents rule:
      sum(total) over completed transactions
    + sum(total - refunded value) over partially_refunded transactions
    (refunded transactions contribute 0).

    Sales add their total incrementally; refunds trigger a full
    re-aggregation. Both run inside the caller's unit of work.
    """

    def create_customer(self, *, name: str, email: str | None = None, phone: str | None = None) -> Customer:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Customer name is required")
        if email:
            email = email.strip().lower()
            existing = db.session.query(Customer).filter_by(email=email).first()
            if existing is not None:
                raise ValidationError(
                    f"Customer with email {email} already exists",
                    details={"customer_id": existing.id},
                )
        customer = Customer(name=name, email=email or None, phone=phone)
        db.session.add(customer)
        db.session.commit()
        return customer

    def get_customer(self, customer_id: int) -> Customer:
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
        return customer

    def _load_locked(self, customer_id: int) -> Customer:
        customer = (
            lock_for_update(db.session.query(Customer).filter_by(id=customer_id))
            .populate_existing()
            .first()
        )
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
        return customer

    def increment_total_spent(self, customer_id: int, amount_cents: int) -> Customer:
        customer = self._load_locked(customer_id)
        customer.total_spent_cents = (customer.total_spent_cents or 0) + amount_cents
        db.session.flush()
        return customer

    def compute_total_spent(self, customer_id: int) -> int:
        """Net-of-refund spend derived from the customer's transactions."""
        completed_total = db.session.query(
            func.coalesce(func.sum(SaleTransaction.total_cents), 0)
        ).filter(
            SaleTransaction.customer_id == customer_id,
            SaleTransaction.status == STATUS_COMPLETED,
        ).scalar()

        partial = db.session.query(SaleTransaction).filter(
            SaleTransaction.customer_id == customer_id,
            SaleTransaction.status == STATUS_PARTIALLY_REFUNDED,
        ).all()
        partial_net = sum(net_revenue_cents(tx.total_cents, tx.items) for tx in partial)

        return int(completed_total or 0) + partial_net

    def recompute_total_spent(self, customer_id: int) -> Customer:
        customer = self._load_locked(customer_id)
        db.session.flush()  # pending refund updates must be visible to the aggregate
        customer.total_spent_cents = self.compute_total_spent(customer_id)
        db.session.flush()
        return customer

    def recompute_all(self) -> int:
        """Re-aggregate every customer; returns how many totals changed."""
        changed = 0
        for customer in db.session.query(Customer).order_by(Customer.id).all():
            total = self.compute_total_spent(customer.id)
            if customer.total_spent_cents != total:
                customer.total_spent_cents = total
                changed += 1
        db.session.commit()
        return changed
