# COA FinSight - Chart-of-Accounts Aggregation & Financial Analysis Engine
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Aging of open receivables and payables.

Open items are classified by ``days_overdue = today - due_date`` into fixed
day-range buckets. The default table is::

    key       days overdue     status
    current   <= 0             current
    0-30      1 .. 30          due
    31-60     31 .. 60         overdue
    61-90     61 .. 90         overdue
    90+       > 90             critical

Bucket and status are read from the same table row, so an item's bucket and
its status can never disagree. Bucket tables must partition the integer
line: the first row is open below, the last row is open above, and each row
starts exactly one day after the previous one ends.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .exceptions import InvalidOpenItemError
from .models import HUNDRED, ZERO, AgingItem

PERCENT_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class BucketDef:
    """One aging bucket: an inclusive day range and the status it implies.

    ``min_days`` None means unbounded below, ``max_days`` None unbounded above.
    """

    key: str
    min_days: Optional[int]
    max_days: Optional[int]
    status: str

    def contains(self, days: int) -> bool:
        if self.min_days is not None and days < self.min_days:
            return False
        if self.max_days is not None and days > self.max_days:
            return False
        return True


DEFAULT_BUCKETS: tuple[BucketDef, ...] = (
    BucketDef("current", None, 0, "current"),
    BucketDef("0-30", 1, 30, "due"),
    BucketDef("31-60", 31, 60, "overdue"),
    BucketDef("61-90", 61, 90, "overdue"),
    BucketDef("90+", 91, None, "critical"),
)


def validate_buckets(buckets: Sequence[BucketDef]) -> None:
    """Check that a bucket table partitions the integer line.

    Raises:
        ValueError: on an empty table, duplicate keys, a bounded first/last
            row, or a gap or overlap between consecutive rows.
    """
    if not buckets:
        raise ValueError("Aging bucket table is empty.")
    keys = [b.key for b in buckets]
    if len(set(keys)) != len(keys):
        raise ValueError(f"Duplicate aging bucket keys: {keys}")
    if buckets[0].min_days is not None:
        raise ValueError(f"First aging bucket '{buckets[0].key}' must have no min_days.")
    if buckets[-1].max_days is not None:
        raise ValueError(f"Last aging bucket '{buckets[-1].key}' must have no max_days.")

    for prev, nxt in zip(buckets, buckets[1:]):
        if prev.max_days is None or nxt.min_days is None:
            raise ValueError(
                f"Only the first/last aging buckets may be open ('{prev.key}', '{nxt.key}')."
            )
        if nxt.min_days != prev.max_days + 1:
            raise ValueError(
                f"Aging buckets '{prev.key}' and '{nxt.key}' leave a gap or overlap."
            )
    for b in buckets:
        if b.min_days is not None and b.max_days is not None and b.min_days > b.max_days:
            raise ValueError(f"Aging bucket '{b.key}' is empty.")


def _as_date(value: date) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def days_overdue(due_date: date, today: date) -> int:
    """Number of days between the due date and today (negative if not due)."""
    return (_as_date(today) - _as_date(due_date)).days


def classify_days(days: int, buckets: Sequence[BucketDef] = DEFAULT_BUCKETS) -> BucketDef:
    """Return the bucket row containing the given day count."""
    for bucket in buckets:
        if bucket.contains(days):
            return bucket
    # Unreachable with a validated table.
    raise ValueError(f"No aging bucket contains {days} days.")


def age_item(item, today: date, buckets: Sequence[BucketDef] = DEFAULT_BUCKETS) -> AgingItem:
    """Age one open item (OpenItem or AgingItem) against ``today``."""
    days = days_overdue(item.due_date, today)
    bucket = classify_days(days, buckets)
    return AgingItem(
        id=str(item.id),
        due_date=_as_date(item.due_date),
        amount=item.amount,
        pending_amount=item.pending_amount,
        days_overdue=days,
        status=bucket.status,
        bucket=bucket.key,
        counterparty=getattr(item, "counterparty", ""),
    )


@dataclass(frozen=True)
class AgingBucket:
    """Items of one bucket with their total and share of the grand total."""

    key: str
    status: str
    items: tuple[AgingItem, ...]
    total: Decimal
    percentage: Decimal

    @property
    def count(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class AgingReport:
    """Result of ``bucketize``: every bucket of the table, in table order."""

    as_of: date
    buckets: dict[str, AgingBucket]
    grand_total: Decimal

    @property
    def items(self) -> tuple[AgingItem, ...]:
        return tuple(i for b in self.buckets.values() for i in b.items)

    @property
    def overdue_total(self) -> Decimal:
        """Pending amount of every item past its due date."""
        return sum(
            (b.total for b in self.buckets.values() if b.status != "current"), ZERO
        )


def _validate_items(items: Sequence) -> None:
    seen: dict[str, int] = {}
    for position, item in enumerate(items):
        item_id = str(item.id)
        if item_id in seen:
            raise InvalidOpenItemError(
                item, f"Duplicate open item id '{item_id}'", position
            )
        seen[item_id] = position
        if item.pending_amount < ZERO:
            raise InvalidOpenItemError(item, "Negative pending amount", position)
        if item.amount < ZERO:
            raise InvalidOpenItemError(item, "Negative amount", position)
        if not isinstance(item.due_date, date):
            raise InvalidOpenItemError(item, "Missing or invalid due date", position)


def bucketize(
    items: Iterable,
    today: date,
    buckets: Sequence[BucketDef] = DEFAULT_BUCKETS,
) -> AgingReport:
    """Classify open items into aging buckets.

    Args:
        items: OpenItem (or AgingItem) records with id, due_date, amount
            and pending_amount.
        today: Reference date.
        buckets: Validated bucket table.

    Returns:
        An AgingReport listing every bucket of the table, even empty ones.
        Each bucket's percentage is its total over the grand total x 100,
        rounded to two decimals, and 0 when the grand total is 0.

    Raises:
        InvalidOpenItemError: on a duplicate id, a negative amount or a
            missing due date.
    """
    items = list(items)
    _validate_items(items)

    grouped: dict[str, list[AgingItem]] = {b.key: [] for b in buckets}
    for item in items:
        aged = age_item(item, today, buckets)
        grouped[aged.bucket].append(aged)

    totals = {
        key: sum((i.pending_amount for i in bucket_items), ZERO)
        for key, bucket_items in grouped.items()
    }
    grand_total = sum(totals.values(), ZERO)

    result: dict[str, AgingBucket] = {}
    for b in buckets:
        if grand_total == ZERO:
            pct = ZERO
        else:
            pct = (totals[b.key] / grand_total * HUNDRED).quantize(
                PERCENT_QUANTUM, rounding=ROUND_HALF_UP
            )
        result[b.key] = AgingBucket(
            key=b.key,
            status=b.status,
            items=tuple(grouped[b.key]),
            total=totals[b.key],
            percentage=pct,
        )

    return AgingReport(as_of=_as_date(today), buckets=result, grand_total=grand_total)
