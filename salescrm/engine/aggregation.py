"""
Aggregation Engine - pipeline health over the visible set.

Monetary sums use Decimal built from each value's text form, so the same
visible set always produces the same totals, with no float drift.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from salescrm.models import Contact, LOST_STAGE, STAGE_IDS

ZERO = Decimal('0')


def to_decimal(value) -> Decimal:
    """Exact Decimal for a stored monetary value; None counts as 0."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    return Decimal(str(value))


@dataclass
class PipelineSummary:
    counts: Dict[str, int] = field(default_factory=dict)
    totals: Dict[str, Decimal] = field(default_factory=dict)
    pipeline_value: Decimal = ZERO
    total_contacts: int = 0

    @property
    def total_value(self) -> Decimal:
        """Sum over every stage, Lost included."""
        return sum(self.totals.values(), ZERO)


def summarize(visible: Iterable[Contact], stages: Optional[List[str]] = None) -> PipelineSummary:
    """
    Per-stage counts and totals across every stage (zero-filled), plus the
    global pipeline value, which leaves out the Lost stage.
    """
    stages = stages or STAGE_IDS
    counts = {stage: 0 for stage in stages}
    totals = {stage: ZERO for stage in stages}
    total_contacts = 0

    for contact in visible:
        total_contacts += 1
        if contact.statut not in counts:
            continue
        counts[contact.statut] += 1
        totals[contact.statut] += to_decimal(contact.valeur_estimee)

    pipeline_value = sum(
        (amount for stage, amount in totals.items() if stage != LOST_STAGE), ZERO
    )
    return PipelineSummary(
        counts=counts,
        totals=totals,
        pipeline_value=pipeline_value,
        total_contacts=total_contacts,
    )


def quick_stats(contacts: Iterable[Contact]) -> Dict[str, int]:
    """Headline counters of the contacts page."""
    summary = summarize(contacts)
    return {
        'total': summary.total_contacts,
        'prospects': summary.counts['Prospect'],
        'clients': summary.counts['Client'],
        'negotiation': summary.counts['Négociation'],
    }
