# Overview: Durable append-only storage of stock movements and cached variant stock.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import and_, or_, select

from ..errors import NotFoundError, StaleStockError, ValidationError
from ..extensions import db
from ..models import ProductVariant, StockMovement
from ..models.inventory import MOVEMENT_KINDS
from ..time_utils import normalize_datetime, parse_iso_datetime
"""
Ledger Store invariants (authoritative)

- Movement rows are appended, never updated or deleted.
- append_movement() only flushes; the caller's unit of work commits.
- A movement whose previous_stock snapshot disagrees with the stock stored
  for the variant at append time is rejected (stale read).
- History reads are ordered newest first (created_at DESC, id DESC) and
  paginate with a keyset cursor "<iso-datetime>|<id>", so a page sequence can
  be restarted from any cursor.
- Date range filters are inclusive on both ends.
"""


@dataclass
class MovementPage:
    items: list = field(default_factory=list)
    next_cursor: str | None = None
    limit: int = 50

    def to_dict(self) -> dict:
        return {
            "items": [m.to_dict() for m in self.items],
            "next_cursor": self.next_cursor,
            "limit": self.limit,
        }


def encode_cursor(movement: StockMovement) -> str:
    return f"{movement.created_at.isoformat()}|{movement.id}"


def decode_cursor(cursor: str) -> tuple[datetime, int]:
    try:
        raw_dt, raw_id = cursor.rsplit("|", 1)
        cursor_dt = parse_iso_datetime(raw_dt)
        cursor_id = int(raw_id)
    except (ValueError, AttributeError):
        raise ValidationError(
            "cursor must be in format <ISO-8601>|<id>",
            details={"cursor": cursor},
        )
    if cursor_dt is None:
        raise ValidationError("cursor must be in format <ISO-8601>|<id>", details={"cursor": cursor})
    return cursor_dt, cursor_id


class LedgerStore:
    """Read/append access to the movement log and the cached stock column."""

    def __init__(self, *, default_limit: int = 50, max_limit: int = 500):
        self.default_limit = default_limit
        self.max_limit = max_limit

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append_movement(self, movement: StockMovement) -> StockMovement:
        recorded = db.session.execute(
            select(ProductVariant.stock).where(ProductVariant.id == movement.variant_id)
        ).scalar_one_or_none()
        if recorded is None:
            raise NotFoundError(
                f"Variant {movement.variant_id} not found",
                details={"variant_id": movement.variant_id},
            )

        if movement.previous_stock != recorded:
            raise StaleStockError(
                f"Stale stock snapshot for variant {movement.variant_id}: "
                f"movement assumed {movement.previous_stock}, store has {recorded}",
                details={
                    "variant_id": movement.variant_id,
                    "previous_stock": movement.previous_stock,
                    "recorded_stock": recorded,
                },
            )

        db.session.add(movement)
        db.session.flush()  # assigns movement.id without committing
        return movement

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_variant(self, variant_id: int) -> ProductVariant:
        variant = db.session.get(ProductVariant, variant_id)
        if variant is None:
            raise NotFoundError(f"Variant {variant_id} not found", details={"variant_id": variant_id})
        return variant

    def get_current_stock(self, variant_id: int) -> int:
        stock = db.session.execute(
            select(ProductVariant.stock).where(ProductVariant.id == variant_id)
        ).scalar_one_or_none()
        if stock is None:
            raise NotFoundError(f"Variant {variant_id} not found", details={"variant_id": variant_id})
        return int(stock)

    def _clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.default_limit
        return max(1, min(int(limit), self.max_limit))

    def get_movement_history(
        self,
        variant_id: int,
        *,
        kind: str | None = None,
        start=None,
        end=None,
        cursor: str | None = None,
        limit: int | None = None,
    ) -> MovementPage:
        """
        One page of a variant's movements, newest first.

        Filters: kind (movement type), start/end (inclusive, ISO string or
        datetime). Pass the returned next_cursor to fetch the following page;
        next_cursor is None on the last page.
        """
        self.get_variant(variant_id)

        if kind is not None and kind not in MOVEMENT_KINDS:
            raise ValidationError(f"Unknown movement kind {kind!r}", details={"kind": kind})

        try:
            start_dt = normalize_datetime(start)
            end_dt = normalize_datetime(end)
        except ValueError:
            raise ValidationError("start and end must be ISO-8601 datetimes")

        if start_dt is not None and end_dt is not None and start_dt > end_dt:
            raise ValidationError("start must not be after end")

        limit = self._clamp_limit(limit)

        q = db.session.query(StockMovement).filter(StockMovement.variant_id == variant_id)
        if kind is not None:
            q = q.filter(StockMovement.type == kind)
        if start_dt is not None:
            q = q.filter(StockMovement.created_at >= start_dt)
        if end_dt is not None:
            q = q.filter(StockMovement.created_at <= end_dt)

        if cursor:
            cursor_dt, cursor_id = decode_cursor(cursor)
            q = q.filter(
                or_(
                    StockMovement.created_at < cursor_dt,
                    and_(StockMovement.created_at == cursor_dt, StockMovement.id < cursor_id),
                )
            )

        # One extra row tells us whether another page exists
        rows = (
            q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .limit(limit + 1)
            .all()
        )

        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = encode_cursor(rows[-1]) if has_more and rows else None

        return MovementPage(items=rows, next_cursor=next_cursor, limit=limit)

    def iter_movement_history(self, variant_id: int, **filters):
        """Walk every page of get_movement_history(); yields movements newest first."""
        cursor = filters.pop("cursor", None)
        while True:
            page = self.get_movement_history(variant_id, cursor=cursor, **filters)
            yield from page.items
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    def iter_movements_chronological(self, variant_id: int, batch_size: int = 500):
        """Movements in creation order (id ascending), streamed in batches."""
        last_id = 0
        while True:
            batch = (
                db.session.query(StockMovement)
                .filter(StockMovement.variant_id == variant_id, StockMovement.id > last_id)
                .order_by(StockMovement.id.asc())
                .limit(batch_size)
                .all()
            )
            if not batch:
                return
            yield from batch
            last_id = batch[-1].id

    def list_recent_movements(self, *, kind: str | None = None, limit: int | None = None) -> list[StockMovement]:
        if kind is not None and kind not in MOVEMENT_KINDS:
            raise ValidationError(f"Unknown movement kind {kind!r}", details={"kind": kind})
        q = db.session.query(StockMovement)
        if kind is not None:
            q = q.filter(StockMovement.type == kind)
        return (
            q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .limit(self._clamp_limit(limit))
            .all()
        )

    def list_product_movements(self, product_id: int, *, limit: int | None = 100) -> list[StockMovement]:
        return (
            db.session.query(StockMovement)
            .join(ProductVariant, ProductVariant.id == StockMovement.variant_id)
            .filter(ProductVariant.product_id == product_id)
            .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .limit(self._clamp_limit(limit))
            .all()
        )
