"""
Reconciliation calculator.

Pure functions: classification of a single verification row from its
(system quantity, physical quantity) pair, and session-level aggregates
derived from the rows. Aggregates are always recomputed from the rows and
never stored.
"""
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Tuple

from app.models.shared.enums import VerificationStatus


def classify(system_quantity: int, physical_quantity: Optional[int]) -> Tuple[VerificationStatus, Optional[int]]:
    """Return (status, discrepancy) for a row."""
    if physical_quantity is None:
        return VerificationStatus.PENDING, None

    discrepancy = physical_quantity - system_quantity
    if discrepancy == 0:
        return VerificationStatus.COMPLETE, 0
    if discrepancy < 0:
        return VerificationStatus.SHORT, discrepancy
    return VerificationStatus.EXCESS, discrepancy


def completion_percent(confirmed_items: int, total_items: int) -> int:
    if total_items == 0:
        return 0
    ratio = Decimal(confirmed_items) * 100 / Decimal(total_items)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class SessionSummary:
    total_items: int = 0
    confirmed_items: int = 0
    pending_items: int = 0
    complete_items: int = 0
    short_items: int = 0
    excess_items: int = 0
    completion_percent: int = 0

    @property
    def discrepancy_items(self) -> int:
        return self.short_items + self.excess_items

    def as_dict(self) -> dict:
        data = asdict(self)
        data["discrepancy_items"] = self.discrepancy_items
        return data


def summarize(rows: Iterable) -> SessionSummary:
    """
    Aggregate verification rows. Each row needs `status` and `physical_quantity`
    attributes (ORM objects and result rows both work).
    """
    total = confirmed = pending = complete = short = excess = 0
    for row in rows:
        total += 1
        if row.physical_quantity is not None:
            confirmed += 1
        status = row.status
        if status == VerificationStatus.PENDING:
            pending += 1
        elif status == VerificationStatus.COMPLETE:
            complete += 1
        elif status == VerificationStatus.SHORT:
            short += 1
        elif status == VerificationStatus.EXCESS:
            excess += 1

    return SessionSummary(
        total_items=total,
        confirmed_items=confirmed,
        pending_items=pending,
        complete_items=complete,
        short_items=short,
        excess_items=excess,
        completion_percent=completion_percent(confirmed, total),
    )
