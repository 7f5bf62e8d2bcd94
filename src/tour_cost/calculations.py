"""Derived tour figures: guide per-diem entries, the financial summary and
the day-by-day service schedule.

All are pure functions of their inputs. ``recompute`` is the only place a
tour's ``per_diem`` and ``financials`` are written; every mutation path in
:mod:`tour_cost.services` goes through it.
"""

from __future__ import annotations

from decimal import Decimal
import re
from typing import Callable, Dict, Iterable, List, Sequence, Tuple

from tour_cost.core import ZERO, clamp_amount, generate_id, normalize_text
from tour_cost.models import (
    Expense,
    FinancialSummary,
    ItineraryItem,
    MasterData,
    PerDiemEntry,
    Tour,
    TourService,
)

_NON_WORD_RE = re.compile(r"[^a-z0-9\s]")


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def calculate_service_total(services: Sequence[TourService]) -> Decimal:
    return _sum(service.unit_price * service.quantity for service in services)


def calculate_per_diem_total(entries: Sequence[PerDiemEntry]) -> Decimal:
    return _sum(entry.total for entry in entries)


def calculate_other_expense_total(expenses: Sequence[Expense]) -> Decimal:
    return _sum(expense.amount for expense in expenses)


def group_itinerary_days(itinerary: Sequence[ItineraryItem]) -> Dict[str, Tuple[str, int]]:
    """Map normalized location -> (first display spelling, day count), in first-seen order."""
    groups: Dict[str, Tuple[str, int]] = {}
    for item in itinerary:
        key = normalize_text(item.location)
        label, days = groups.get(key, (item.location.strip(), 0))
        groups[key] = (label, days + 1)
    return groups


def calculate_per_diem_entries(
    itinerary: Sequence[ItineraryItem],
    guide_id: str,
    master_data: MasterData,
    id_factory: Callable[[], str] = generate_id,
) -> List[PerDiemEntry]:
    if not guide_id:
        return []

    entries: List[PerDiemEntry] = []
    for key, (label, days) in group_itinerary_days(itinerary).items():
        rate = master_data.find_rate_for_location(key)
        # Unknown locations are billed at zero rather than rejected.
        amount = rate.rate if rate else ZERO
        entries.append(
            PerDiemEntry(
                id=id_factory(),
                guide_id=guide_id,
                location=rate.location if rate else label,
                days=days,
                rate=amount,
                total=amount * days,
            )
        )
    return entries


def normalize_financial_summary(
    financials: FinancialSummary,
    services: Sequence[TourService],
    per_diem: Sequence[PerDiemEntry],
    other_expenses: Sequence[Expense],
) -> FinancialSummary:
    advance = clamp_amount(financials.advance)
    collections = clamp_amount(financials.collections_for_company)
    tip = clamp_amount(financials.company_tip)

    total_cost = (
        calculate_service_total(services)
        + calculate_per_diem_total(per_diem)
        + calculate_other_expense_total(other_expenses)
    )
    return FinancialSummary(
        advance=advance,
        collections_for_company=collections,
        company_tip=tip,
        total_cost=total_cost,
        difference_to_advance=advance + collections - (total_cost + tip),
    )


def recompute(tour: Tour, master_data: MasterData, id_factory: Callable[[], str] = generate_id) -> Tour:
    """Return a copy of ``tour`` with per-diem and financials re-derived."""
    per_diem = calculate_per_diem_entries(tour.itinerary, tour.general.guide_id, master_data, id_factory)
    financials = normalize_financial_summary(tour.financials, tour.services, per_diem, tour.other_expenses)
    return tour.model_copy(update={"per_diem": per_diem, "financials": financials}, deep=True)


def _plain(value: str) -> str:
    return _NON_WORD_RE.sub("", normalize_text(value))


def _tokens(value: str) -> List[str]:
    return [token for token in _plain(value).split() if len(token) >= 3]


def _mentions(tokens: Sequence[str], service: TourService) -> bool:
    haystacks = [_plain(service.description)]
    if service.notes:
        haystacks.append(_plain(service.notes))
    return any(token in text for token in tokens for text in haystacks)


def group_services_by_itinerary(
    itinerary: Sequence[ItineraryItem], services: Sequence[TourService]
) -> Dict[str, List[TourService]]:
    """Assign each service line to an itinerary day, keyed by itinerary item id.

    A line goes to the first day whose location or activity words (three or
    more letters) appear in its description or notes. Lines that mention no
    day are dealt out over the days in turn.
    """
    grouped: Dict[str, List[TourService]] = {item.id: [] for item in itinerary}
    if not itinerary:
        return grouped

    day_tokens = [(item.id, _tokens(" ".join([item.location, *item.activities]))) for item in itinerary]
    unmatched: List[TourService] = []
    for service in services:
        day_id = next((item_id for item_id, tokens in day_tokens if _mentions(tokens, service)), None)
        if day_id is None:
            unmatched.append(service)
        else:
            grouped[day_id].append(service)

    for index, service in enumerate(unmatched):
        grouped[itinerary[index % len(itinerary)].id].append(service)
    return grouped
