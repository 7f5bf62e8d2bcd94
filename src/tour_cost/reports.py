"""Cross-tour figures for the dashboard: spend, price corrections and
tours whose advance has not been settled yet."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from tour_cost.core import ZERO
from tour_cost.models import SettlementItem, Tour, TourPortfolioSummary

REFUND_TO_COMPANY = "refund_to_company"
COMPANY_TOP_UP = "company_top_up"
BALANCED = "balanced"


def _parse_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def settlement_status(difference: Decimal) -> str:
    if difference > 0:
        return REFUND_TO_COMPANY
    if difference < 0:
        return COMPANY_TOP_UP
    return BALANCED


def count_corrections(tour: Tour) -> int:
    """Service lines whose billed price differs from the document price."""
    return sum(1 for service in tour.services if service.discrepancy != 0)


def pending_settlements(tours: Sequence[Tour]) -> list[SettlementItem]:
    """Unsettled tours, earliest end date first; larger differences break ties.

    Tours without a usable end date come last.
    """
    unsettled = [tour for tour in tours if tour.financials.difference_to_advance != 0]

    def order(tour: Tour):
        end = _parse_date(tour.general.end_date)
        return (end is None, end or date.min, -abs(tour.financials.difference_to_advance))

    return [
        SettlementItem(
            tour_id=tour.id,
            code=tour.general.code,
            customer_name=tour.general.customer_name,
            end_date=tour.general.end_date,
            difference_to_advance=tour.financials.difference_to_advance,
            status=settlement_status(tour.financials.difference_to_advance),
        )
        for tour in sorted(unsettled, key=order)
    ]


def summarize_tours(tours: Sequence[Tour]) -> TourPortfolioSummary:
    return TourPortfolioSummary(
        tour_count=len(tours),
        total_spend=sum((tour.financials.total_cost for tour in tours), ZERO),
        total_corrections=sum(count_corrections(tour) for tour in tours),
        pending_settlements=pending_settlements(tours),
    )


def filter_tours(
    tours: Sequence[Tour],
    search: str = "",
    guide_id: Optional[str] = None,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
) -> list[Tour]:
    """Filter by a case-insensitive search over code, customer and company,
    by guide, and by a start-date window (inclusive).

    A tour whose start date cannot be read is dropped once a window is set.
    """
    term = search.strip().lower()
    lower = _parse_date(from_date) if from_date else None
    upper = _parse_date(to_date) if to_date else None

    selected = []
    for tour in tours:
        general = tour.general
        if term:
            fields = [general.code, general.customer_name, general.client_company or ""]
            if not any(term in value.lower() for value in fields if value):
                continue
        if guide_id and general.guide_id != guide_id:
            continue
        if lower or upper:
            start = _parse_date(general.start_date)
            if start is None or (lower and start < lower) or (upper and start > upper):
                continue
        selected.append(tour)
    return selected
