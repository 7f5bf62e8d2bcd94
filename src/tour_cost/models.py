"""Pydantic models for catalog data, tours and AI extraction results.

Field names are snake_case in Python and camelCase on the wire, so stored
documents keep the shape the extraction service and the store expect.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tour_cost.core import ZERO, generate_id, normalize_text, sanitize_tour_code


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# -----------------------------
# Master data
# -----------------------------


class Service(Document):
    id: str
    name: str
    category: str = ""
    price: Decimal = ZERO
    unit: str = ""
    partner_id: Optional[str] = None
    description: Optional[str] = None


class Guide(Document):
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    languages: list[str] = Field(default_factory=list)


class Partner(Document):
    id: str
    name: str
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


class PerDiemRate(Document):
    id: str
    location: str
    rate: Decimal = ZERO
    currency: str = "VND"
    notes: Optional[str] = None


class Catalogs(Document):
    nationalities: list[str] = Field(default_factory=list)
    service_types: list[str] = Field(default_factory=list)


class MasterData(Document):
    services: list[Service] = Field(default_factory=list)
    guides: list[Guide] = Field(default_factory=list)
    partners: list[Partner] = Field(default_factory=list)
    per_diem_rates: list[PerDiemRate] = Field(default_factory=list)
    catalogs: Catalogs = Field(default_factory=Catalogs)

    def find_service_by_name(self, query: str) -> Optional[Service]:
        normalized = normalize_text(query)
        if not normalized:
            return None
        return next((s for s in self.services if normalized in normalize_text(s.name)), None)

    def find_guide_by_name(self, query: str) -> Optional[Guide]:
        normalized = normalize_text(query)
        if not normalized:
            return None
        return next((g for g in self.guides if normalized in normalize_text(g.name)), None)

    def find_rate_for_location(self, location_key: str) -> Optional[PerDiemRate]:
        return next(
            (r for r in self.per_diem_rates if normalize_text(r.location) == location_key),
            None,
        )


# -----------------------------
# Tour aggregate
# -----------------------------


class ItineraryItem(Document):
    id: str = Field(default_factory=generate_id)
    day: int = 0
    date: str = ""
    location: str = ""
    activities: list[str] = Field(default_factory=list)


class TourService(Document):
    id: str = Field(default_factory=generate_id)
    service_id: str = Field(default_factory=generate_id)
    description: str = ""
    quantity: int = 0
    unit_price: Decimal = ZERO
    source_price: Decimal = ZERO
    discrepancy: Decimal = ZERO
    notes: Optional[str] = None


class PerDiemEntry(Document):
    id: str = Field(default_factory=generate_id)
    guide_id: str
    location: str
    days: int
    rate: Decimal
    total: Decimal


class Expense(Document):
    id: str = Field(default_factory=generate_id)
    description: str = ""
    amount: Decimal = ZERO
    date: str = ""
    notes: Optional[str] = None


class FinancialSummary(Document):
    advance: Decimal = ZERO
    collections_for_company: Decimal = ZERO
    company_tip: Decimal = ZERO
    total_cost: Decimal = ZERO
    difference_to_advance: Decimal = ZERO


class TourGeneralInfo(Document):
    code: str = ""
    customer_name: str = ""
    client_company: Optional[str] = None
    nationality: str = ""
    pax: int = 0
    start_date: str = ""
    end_date: str = ""
    guide_id: str = ""
    driver_name: str = ""
    notes: Optional[str] = None


class Tour(Document):
    id: str
    general: TourGeneralInfo
    itinerary: list[ItineraryItem] = Field(default_factory=list)
    services: list[TourService] = Field(default_factory=list)
    per_diem: list[PerDiemEntry] = Field(default_factory=list)
    other_expenses: list[Expense] = Field(default_factory=list)
    financials: FinancialSummary = Field(default_factory=FinancialSummary)
    created_at: str
    updated_at: str

    @property
    def code_key(self) -> str:
        return sanitize_tour_code(self.general.code)


# -----------------------------
# Extraction contracts
# -----------------------------


class ExtractionGeneralInfo(Document):
    tour_code: str = ""
    customer_name: str = ""
    client_company: Optional[str] = None
    pax: int = 0
    nationality: str = ""
    start_date: str = ""
    end_date: str = ""
    guide_name: str = ""
    driver_name: str = ""
    notes: Optional[str] = None


class ExtractionServiceCandidate(Document):
    raw_name: str = ""
    quantity: int = 0
    price: Decimal = ZERO
    notes: Optional[str] = None


class ExtractionItineraryItem(Document):
    day: int = 0
    date: str = ""
    location: str = ""
    activities: list[str] = Field(default_factory=list)


class ExtractionExpense(Document):
    description: str = ""
    amount: Decimal = ZERO
    date: str = ""
    notes: Optional[str] = None


class ExtractionResult(Document):
    general: ExtractionGeneralInfo = Field(default_factory=ExtractionGeneralInfo)
    services: list[ExtractionServiceCandidate] = Field(default_factory=list)
    itinerary: list[ExtractionItineraryItem] = Field(default_factory=list)
    other_expenses: list[ExtractionExpense] = Field(default_factory=list)
    advance: Optional[Decimal] = None
    collections_for_company: Optional[Decimal] = None
    company_tip: Optional[Decimal] = None


class MatchedService(Document):
    candidate: ExtractionServiceCandidate
    service: Optional[Service] = None
    normalized_price: Decimal
    discrepancy: Decimal


# -----------------------------
# Reports
# -----------------------------


class SettlementItem(Document):
    tour_id: str
    code: str
    customer_name: str = ""
    end_date: str = ""
    difference_to_advance: Decimal
    status: str


class TourPortfolioSummary(Document):
    tour_count: int = 0
    total_spend: Decimal = ZERO
    total_corrections: int = 0
    pending_settlements: list[SettlementItem] = Field(default_factory=list)
