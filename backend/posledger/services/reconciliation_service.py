# Overview: Read-only check that cached variant stock equals the ledger replay.

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from flask import current_app

from ..extensions import db
from ..models import ProductVariant
from .ledger_store import LedgerStore


@dataclass
class ReconciliationReport:
    variant_id: int
    ok: bool
    cached_stock: int
    ledger_derived_stock: int
    movement_count: int
    chain_breaks: list = field(default_factory=list)
    clamped_movements: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def replay(movements, start: int = 0) -> tuple[int, int, list, list]:
    """
    Replay deltas in creation order with the clamp-at-zero rule.

    Returns (derived_stock, movement_count, chain_breaks, clamped_ids).
    A chain break is a movement whose previous_stock does not match the
    running value at that point.
    """
    running = start
    count = 0
    breaks = []
    clamped = []
    for m in movements:
        count += 1
        if m.previous_stock != running:
            breaks.append(m.id)
        raw = running + m.quantity_delta
        running = max(0, raw)
        if raw < 0:
            clamped.append(m.id)
    return running, count, breaks, clamped


class Reconciler:
    def __init__(self, store: LedgerStore):
        self.store = store

    def reconcile(self, variant_id: int) -> ReconciliationReport:
        """Never writes. ok is True iff the replayed stock equals the cached stock."""
        cached = self.store.get_current_stock(variant_id)
        derived, count, breaks, clamped = replay(self.store.iter_movements_chronological(variant_id))

        report = ReconciliationReport(
            variant_id=variant_id,
            ok=derived == cached,
            cached_stock=cached,
            ledger_derived_stock=derived,
            movement_count=count,
            chain_breaks=breaks,
            clamped_movements=clamped,
        )
        if not report.ok:
            current_app.logger.error(
                "Stock drift detected: variant_id=%s cached=%s ledger=%s movements=%s",
                variant_id, cached, derived, count,
            )
        elif breaks:
            current_app.logger.warning(
                "Ledger chain breaks: variant_id=%s movement_ids=%s", variant_id, breaks,
            )
        return report

    def reconcile_all(self, *, include_archived: bool = True) -> list[ReconciliationReport]:
        q = db.session.query(ProductVariant.id)
        if not include_archived:
            q = q.filter(ProductVariant.is_archived.is_(False))
        return [self.reconcile(variant_id) for (variant_id,) in q.order_by(ProductVariant.id).all()]
