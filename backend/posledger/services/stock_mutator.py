# Overview: The single code path allowed to change a variant's cached stock.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import ProductVariant, StockMovement
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_KINDS,
    MOVEMENT_RESTOCK,
    MOVEMENT_RETURN,
    MOVEMENT_SHRINKAGE,
)
from ..time_utils import utcnow
from .concurrency import KeyedLocks, lock_for_update, run_with_retry, unit_of_work
from .ledger_store import LedgerStore
"""
Stock Mutator invariants (authoritative)

- Only this module writes ProductVariant.stock and inserts StockMovement rows.
- Every change runs inside the variant's critical section: an in-process
  keyed lock, then a write transaction with the variant row re-read under
  lock. Two mutations of the same variant never interleave their
  read-modify-write; mutations of different variants never wait on each
  other's keyed lock.
- new_stock = max(0, previous_stock + delta). A clamped result is recorded
  on the movement (clamped_shortfall) and logged as a warning.
- Sign/kind mismatches are recorded as given; callers choose the sign.
- The movement insert and the stock update commit together or not at all.
"""

ADJUST_MODE_ADD = "add"
ADJUST_MODE_SET = "set"
ADJUST_MODE_REMOVE = "remove"
ADJUST_MODES = (ADJUST_MODE_ADD, ADJUST_MODE_SET, ADJUST_MODE_REMOVE)

# Largest quantity a single movement or cart line may carry
MAX_QUANTITY = 1_000_000

SHRINKAGE_REASONS = {"damaged", "theft"}
CUSTOMER_RETURN_REASON = "customer_return"


def variant_key(variant_id: int) -> tuple:
    return ("variant", variant_id)


@dataclass(frozen=True)
class StockAdjustment:
    """An operator adjustment expressed as add / set / remove of a positive value."""
    variant_id: int
    mode: str
    value: int
    reason: str | None = None
    notes: str | None = None


def resolve_adjustment(mode: str, value: int, reason: str | None, current_stock: int) -> tuple[str, int]:
    """
    Map an adjustment mode onto (movement kind, signed delta).

    - add: RESTOCK (RETURN when the reason is a customer return)
    - set: ADJUSTMENT by the difference to the target level
    - remove: SHRINKAGE for damage/theft, otherwise ADJUSTMENT
    """
    if mode == ADJUST_MODE_ADD:
        kind = MOVEMENT_RETURN if reason == CUSTOMER_RETURN_REASON else MOVEMENT_RESTOCK
        return kind, value
    if mode == ADJUST_MODE_SET:
        return MOVEMENT_ADJUSTMENT, value - current_stock
    if mode == ADJUST_MODE_REMOVE:
        if value > current_stock:
            raise ValidationError(
                "Stock cannot be negative",
                details={"current_stock": current_stock, "requested_removal": value},
            )
        kind = MOVEMENT_SHRINKAGE if reason in SHRINKAGE_REASONS else MOVEMENT_ADJUSTMENT
        return kind, -value
    raise ValidationError(f"Invalid adjustment mode {mode!r}", details={"mode": mode})


class StockMutator:
    def __init__(self, store: LedgerStore, locks: KeyedLocks | None = None, *, retry_attempts: int = 3):
        self.store = store
        self.locks = locks or KeyedLocks()
        self.retry_attempts = retry_attempts

    def critical_section(self, variant_ids, extra_keys=()):
        """Hold the keyed locks for every variant id (plus any extra keys)."""
        keys = [variant_key(v) for v in variant_ids]
        keys.extend(extra_keys)
        return self.locks.hold(keys)

    def load_locked(self, variant_id: int) -> ProductVariant:
        variant = (
            lock_for_update(db.session.query(ProductVariant).filter_by(id=variant_id))
            .populate_existing()
            .first()
        )
        if variant is None:
            raise NotFoundError(f"Variant {variant_id} not found", details={"variant_id": variant_id})
        return variant

    def apply_locked(
        self,
        variant_id: int,
        kind: str,
        delta: int,
        *,
        reason: str | None = None,
        reference_id: int | None = None,
        user_id: int | None = None,
        notes: str | None = None,
        variant: ProductVariant | None = None,
    ) -> StockMovement:
        """
        Apply a signed delta inside a caller-owned unit of work.

        The caller must already hold critical_section([variant_id]) and an
        open write transaction. Nothing is committed here.
        """
        if kind not in MOVEMENT_KINDS:
            raise ValidationError(f"Unknown movement kind {kind!r}", details={"kind": kind})
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError("delta must be an integer", details={"delta": delta})
        if abs(delta) > MAX_QUANTITY:
            raise ValidationError(
                f"delta cannot exceed {MAX_QUANTITY} in either direction",
                details={"variant_id": variant_id, "delta": delta},
            )

        if variant is None:
            variant = self.load_locked(variant_id)

        previous_stock = variant.stock
        raw_new = previous_stock + delta
        new_stock = max(0, raw_new)
        shortfall = new_stock - raw_new

        movement = StockMovement(
            variant_id=variant.id,
            type=kind,
            quantity_delta=delta,
            previous_stock=previous_stock,
            new_stock=new_stock,
            clamped_shortfall=shortfall,
            reason=reason,
            notes=notes,
            reference_id=reference_id,
            user_id=user_id,
            created_at=utcnow(),
        )
        self.store.append_movement(movement)

        variant.stock = new_stock
        if kind == MOVEMENT_RESTOCK and delta > 0:
            variant.last_restocked_at = movement.created_at
        db.session.flush()

        if shortfall:
            current_app.logger.warning(
                "Stock clamped at zero: variant_id=%s sku=%s kind=%s delta=%s previous=%s shortfall=%s movement_id=%s",
                variant.id, variant.sku, kind, delta, previous_stock, shortfall, movement.id,
            )

        return movement

    def apply_delta(
        self,
        variant_id: int,
        kind: str,
        delta: int,
        reason: str | None = None,
        reference_id: int | None = None,
        user_id: int | None = None,
        notes: str | None = None,
    ) -> StockMovement:
        """
        Change a variant's stock by a signed delta and record the movement.

        Opens and commits its own unit of work under the variant's critical
        section. Raises NotFoundError for an unknown variant.
        """
        def _op():
            with self.critical_section([variant_id]):
                with unit_of_work():
                    movement = self.apply_locked(
                        variant_id,
                        kind,
                        delta,
                        reason=reason,
                        reference_id=reference_id,
                        user_id=user_id,
                        notes=notes,
                    )
            return movement

        movement = run_with_retry(_op, attempts=self.retry_attempts)
        current_app.logger.info(
            "Stock movement recorded: movement_id=%s variant_id=%s kind=%s delta=%s new_stock=%s",
            movement.id, movement.variant_id, movement.type, movement.quantity_delta, movement.new_stock,
        )
        return movement

    def _apply_adjustment_locked(self, adjustment: StockAdjustment, user_id: int | None) -> StockMovement:
        if isinstance(adjustment.value, bool) or not isinstance(adjustment.value, int) or adjustment.value <= 0:
            raise ValidationError(
                "Adjustment value must be a positive integer",
                details={"variant_id": adjustment.variant_id, "value": adjustment.value},
            )
        if adjustment.value > MAX_QUANTITY:
            raise ValidationError(
                f"Adjustment value cannot exceed {MAX_QUANTITY}",
                details={"variant_id": adjustment.variant_id, "value": adjustment.value},
            )
        variant = self.load_locked(adjustment.variant_id)
        try:
            kind, delta = resolve_adjustment(adjustment.mode, adjustment.value, adjustment.reason, variant.stock)
        except ValidationError as exc:
            exc.details.setdefault("variant_id", adjustment.variant_id)
            raise
        return self.apply_locked(
            variant.id,
            kind,
            delta,
            reason=adjustment.reason,
            notes=adjustment.notes,
            user_id=user_id,
            variant=variant,
        )

    def apply_adjustment(self, adjustment: StockAdjustment, user_id: int | None = None) -> StockMovement:
        """Operator adjustment (add / set / remove) for one variant."""
        def _op():
            with self.critical_section([adjustment.variant_id]):
                with unit_of_work():
                    movement = self._apply_adjustment_locked(adjustment, user_id)
            return movement

        return run_with_retry(_op, attempts=self.retry_attempts)

    def apply_bulk(self, adjustments: list[StockAdjustment], user_id: int | None = None) -> list[StockMovement]:
        """Several adjustments committed as one unit; any failure rejects all of them."""
        if not adjustments:
            raise ValidationError("No movements provided")

        def _op():
            with self.critical_section([a.variant_id for a in adjustments]):
                with unit_of_work():
                    movements = [self._apply_adjustment_locked(a, user_id) for a in adjustments]
            return movements

        movements = run_with_retry(_op, attempts=self.retry_attempts)
        current_app.logger.info("Bulk stock adjustment recorded: %s movements", len(movements))
        return movements
