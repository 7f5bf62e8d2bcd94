from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Sequence

from tour_cost.calculations import recompute
from tour_cost.core import ValidationResult, generate_id, sanitize_tour_code, utc_now, validate_tour
from tour_cost.matching import match_extracted_services, build_tour_services
from tour_cost.models import (
    Expense,
    ExtractionResult,
    FinancialSummary,
    ItineraryItem,
    MasterData,
    MatchedService,
    Tour,
    TourGeneralInfo,
)
from tour_cost.stores import MasterDataStore, StoreError, TourStore, Unsubscribe

logger = logging.getLogger(__name__)

TourUpdater = Callable[[Tour], Tour]


class TourNotFoundError(KeyError):
    """Raised when an operation targets a tour id that is not loaded."""


class DuplicateTourCodeError(ValueError):
    """Raised when an edit would give a tour the code key of another tour."""

    def __init__(self, code: str, owner_id: str):
        self.code = code
        self.owner_id = owner_id
        super().__init__(f"Tour code {code!r} is already used by tour {owner_id}")


class TourRecordAssembler:
    """Owns the in-memory tour list and is the only writer of derived tour fields.

    Local state is updated first and the store write follows. Store failures
    are logged and the local copy stays authoritative: the tour is kept in a
    pending overlay so remote snapshots cannot overwrite it until a later
    write is confirmed.
    """

    def __init__(self, tour_store: TourStore, master_data_store: MasterDataStore):
        self.tour_store = tour_store
        self.master_data_store = master_data_store
        self.master_data: MasterData = master_data_store.load()
        self._tours: List[Tour] = []
        self._pending: Dict[str, Tour] = {}
        self._subscriptions: List[Unsubscribe] = []

    # -----------------------------
    # Lifecycle
    # -----------------------------

    def load(self) -> List[Tour]:
        try:
            self._tours = self.tour_store.fetch_all()
        except StoreError:
            logger.exception("Failed to fetch tours, starting with the local list")
        if not self._subscriptions:
            self._subscriptions.append(self.tour_store.subscribe(self.apply_remote_snapshot))
            self._subscriptions.append(self.master_data_store.subscribe(self._on_master_data))
        return self.tours

    def close(self) -> None:
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()

    def _on_master_data(self, master_data: MasterData) -> None:
        self.master_data = master_data

    # -----------------------------
    # Queries
    # -----------------------------

    @property
    def tours(self) -> List[Tour]:
        return list(self._tours)

    @property
    def pending_ids(self) -> List[str]:
        return list(self._pending)

    def get_tour(self, tour_id: str) -> Optional[Tour]:
        return next((tour for tour in self._tours if tour.id == tour_id), None)

    def find_by_code(self, code: str) -> Optional[Tour]:
        key = sanitize_tour_code(code)
        return next((tour for tour in self._tours if tour.code_key == key), None)

    # -----------------------------
    # Mutations
    # -----------------------------

    def create_tour(
        self,
        general: TourGeneralInfo,
        itinerary: Sequence[ItineraryItem],
        matches: Sequence[MatchedService],
        other_expenses: Sequence[Expense],
        financials: Optional[FinancialSummary] = None,
    ) -> str:
        existing = self.find_by_code(general.code)
        now = utc_now()
        draft = Tour(
            id=existing.id if existing else generate_id(),
            general=general,
            itinerary=list(itinerary),
            services=build_tour_services(matches),
            per_diem=[],
            other_expenses=list(other_expenses),
            financials=financials or FinancialSummary(),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        tour = recompute(draft, self.master_data)

        if existing:
            logger.info("Tour code %s already exists, merging into %s", general.code, existing.id)
            self._replace(tour)
        else:
            logger.info("Created tour %s (%s)", general.code, tour.id)
            self._tours.append(tour)

        self._persist(tour, previous_code=existing.general.code if existing else None)
        return tour.id

    def create_from_extraction(self, extraction: ExtractionResult) -> str:
        """AI-import path: no validation, unmatched fields are left empty."""
        extracted = extraction.general
        guide = self.master_data.find_guide_by_name(extracted.guide_name)
        if guide is None and extracted.guide_name:
            logger.warning("Guide %r not found in master data", extracted.guide_name)

        general = TourGeneralInfo(
            code=extracted.tour_code,
            customer_name=extracted.customer_name,
            client_company=extracted.client_company or "",
            nationality=extracted.nationality,
            pax=extracted.pax,
            start_date=extracted.start_date,
            end_date=extracted.end_date,
            guide_id=guide.id if guide else "",
            driver_name=extracted.driver_name,
            notes=extracted.notes or "",
        )
        itinerary = [
            ItineraryItem(day=item.day, date=item.date, location=item.location, activities=list(item.activities))
            for item in extraction.itinerary
        ]
        expenses = [
            Expense(description=e.description, amount=e.amount, date=e.date, notes=e.notes)
            for e in extraction.other_expenses
        ]
        financials = FinancialSummary(
            advance=extraction.advance or 0,
            collections_for_company=extraction.collections_for_company or 0,
            company_tip=extraction.company_tip or 0,
        )
        matches = match_extracted_services(extraction, self.master_data.services)
        return self.create_tour(general, itinerary, matches, expenses, financials)

    def update_tour(self, tour_id: str, updater: TourUpdater) -> Tour:
        current = self.get_tour(tour_id)
        if current is None:
            raise TourNotFoundError(tour_id)

        edited = updater(current.model_copy(deep=True))
        owner = self._code_owner(edited.general.code, current.id)
        if owner is not None:
            raise DuplicateTourCodeError(edited.general.code, owner.id)
        tour = recompute(edited, self.master_data).model_copy(
            update={"id": current.id, "created_at": current.created_at, "updated_at": utc_now()}
        )
        self._replace(tour)
        self._persist(tour, previous_code=current.general.code)
        return tour

    def save_manual_edit(self, tour: Tour) -> ValidationResult:
        validation = validate_tour(tour)
        if self._code_owner(tour.general.code, tour.id) is not None:
            validation = ValidationResult(
                ready_to_save=False,
                blockers=validation.blockers + ["Tour code is already used by another tour"],
            )
        if not validation.ready_to_save:
            logger.info("Tour %s has %d validation blockers", tour.id, len(validation.blockers))
            return validation
        self.update_tour(tour.id, lambda _working: tour)
        return validation

    def delete_tour(self, tour_id: str) -> bool:
        tour = self.get_tour(tour_id)
        if tour is None:
            return False
        self._tours = [t for t in self._tours if t.id != tour_id]
        self._pending.pop(tour_id, None)
        try:
            self.tour_store.delete(tour.general.code)
        except StoreError:
            logger.exception("Failed to delete tour %s from the store", tour.general.code)
        return True

    def apply_remote_snapshot(self, snapshot: Sequence[Tour]) -> None:
        merged: Dict[str, Tour] = {}
        for tour in snapshot:
            seen = merged.get(tour.id)
            # A renamed tour can briefly exist under both its old and new key.
            if seen is None or tour.updated_at > seen.updated_at:
                merged[tour.id] = tour
        for tour_id, tour in self._pending.items():
            merged[tour_id] = tour
        self._tours = list(merged.values())

    # -----------------------------
    # Internals
    # -----------------------------

    def _code_owner(self, code: str, tour_id: str) -> Optional[Tour]:
        """Return the other tour already stored under ``code``, if any."""
        owner = self.find_by_code(code)
        if owner is None or owner.id == tour_id:
            return None
        return owner

    def _replace(self, tour: Tour) -> None:
        self._tours = [tour if t.id == tour.id else t for t in self._tours]

    def _persist(self, tour: Tour, previous_code: Optional[str] = None) -> None:
        self._pending[tour.id] = tour
        try:
            self.tour_store.save(tour)
            if previous_code is not None and sanitize_tour_code(previous_code) != tour.code_key:
                self.tour_store.delete(previous_code)
        except StoreError:
            logger.exception("Failed to persist tour %s, keeping the local copy", tour.general.code)
            return
        self._pending.pop(tour.id, None)
