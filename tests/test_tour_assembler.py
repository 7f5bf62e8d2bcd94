from decimal import Decimal

import pytest

from tour_cost.db import apply_migrations, applied_migrations, connect_sqlite, open_tour_database
from tour_cost.matching import match_service
from tour_cost.models import (
    Expense,
    ExtractionExpense,
    ExtractionGeneralInfo,
    ExtractionItineraryItem,
    ExtractionResult,
    ExtractionServiceCandidate,
    FinancialSummary,
    ItineraryItem,
    TourGeneralInfo,
)
from tour_cost.services import DuplicateTourCodeError, TourNotFoundError, TourRecordAssembler
from tour_cost.stores import (
    InMemoryMasterDataStore,
    InMemoryTourStore,
    SqliteMasterDataStore,
    SqliteTourStore,
    StoreError,
    load_master_data_seed,
)

from conftest import sample_master_data


class FlakyTourStore(InMemoryTourStore):
    def __init__(self):
        super().__init__()
        self.offline = True

    def save(self, tour):
        if self.offline:
            raise StoreError("store unreachable")
        super().save(tour)

    def delete(self, code):
        if self.offline:
            raise StoreError("store unreachable")
        super().delete(code)


class StickyDeleteTourStore(InMemoryTourStore):
    """Accepts writes but cannot remove documents."""

    def delete(self, code):
        raise StoreError("delete rejected")


def general(code="DAD-01", **overrides):
    values = dict(
        code=code,
        customer_name="Lim Family",
        nationality="Singapore",
        pax=4,
        start_date="2026-03-01",
        end_date="2026-03-03",
        guide_id="guide-tu",
        driver_name="Mr. Phuc",
    )
    values.update(overrides)
    return TourGeneralInfo(**values)


def create_sample_tour(assembler, code="DAD-01", **overrides):
    catalog = assembler.master_data.services
    matches = [match_service(ExtractionServiceCandidate(raw_name="set menu", quantity=4, price=240_000), catalog)]
    return assembler.create_tour(
        general(code, **overrides),
        [
            ItineraryItem(day=1, date="2026-03-01", location="Đà Nẵng"),
            ItineraryItem(day=2, date="2026-03-02", location="Hội An"),
        ],
        matches,
        [Expense(description="Parking", amount=50_000)],
        FinancialSummary(advance=3_000_000, company_tip=100_000),
    )


def test_create_tour_derives_per_diem_and_financials(assembler, tour_store):
    tour_id = create_sample_tour(assembler)
    tour = assembler.get_tour(tour_id)

    assert [entry.location for entry in tour.per_diem] == ["Đà Nẵng", "Hội An"]
    assert tour.services[0].unit_price == 260_000
    assert tour.services[0].source_price == 240_000
    assert tour.services[0].discrepancy == 20_000
    assert tour.financials.total_cost == 4 * 260_000 + 450_000 + 500_000 + 50_000
    assert tour.financials.difference_to_advance == Decimal(3_000_000) - (tour.financials.total_cost + 100_000)
    assert tour.created_at == tour.updated_at
    assert tour_store.keys() == ["dad-01"]
    assert assembler.pending_ids == []


def test_existing_code_is_merged_case_insensitively(assembler, tour_store):
    first_id = create_sample_tour(assembler, code="sgn-01")
    created_at = assembler.get_tour(first_id).created_at

    second_id = create_sample_tour(assembler, code="SGN-01", customer_name="Tan Family")

    assert second_id == first_id
    assert len(assembler.tours) == 1
    merged = assembler.get_tour(first_id)
    assert merged.created_at == created_at
    assert merged.general.customer_name == "Tan Family"
    assert tour_store.keys() == ["sgn-01"]


def test_update_always_recomputes_derived_fields(assembler, tour_store):
    tour_id = create_sample_tour(assembler)
    before = assembler.get_tour(tour_id)

    def add_hue_day(tour):
        tour.itinerary.append(ItineraryItem(day=3, date="2026-03-03", location="Huế"))
        tour.financials.total_cost = Decimal("1")
        return tour

    updated = assembler.update_tour(tour_id, add_hue_day)

    assert len(updated.per_diem) == 3
    assert updated.financials.total_cost == before.financials.total_cost + 550_000
    assert updated.created_at == before.created_at
    assert len(before.itinerary) == 2
    assert tour_store.fetch_all()[0].financials.total_cost == updated.financials.total_cost


def test_removing_the_guide_clears_per_diem(assembler):
    tour_id = create_sample_tour(assembler)

    def unassign(tour):
        tour.general.guide_id = ""
        return tour

    updated = assembler.update_tour(tour_id, unassign)
    assert updated.per_diem == []
    assert updated.financials.total_cost == 4 * 260_000 + 50_000


def test_changing_the_code_moves_the_stored_document(assembler, tour_store):
    tour_id = create_sample_tour(assembler, code="HAN-01")

    def rename(tour):
        tour.general.code = "HAN-02"
        return tour

    assembler.update_tour(tour_id, rename)
    assert tour_store.keys() == ["han-02"]


def test_update_unknown_tour_raises(assembler):
    with pytest.raises(TourNotFoundError):
        assembler.update_tour("missing", lambda tour: tour)


def test_manual_edit_is_blocked_by_validation(assembler):
    tour_id = create_sample_tour(assembler)
    edited = assembler.get_tour(tour_id).model_copy(deep=True)
    edited.general.customer_name = " "
    edited.other_expenses[0].amount = Decimal("-1")

    result = assembler.save_manual_edit(edited)

    assert not result.ready_to_save
    assert len(result.blockers) == 2
    assert assembler.get_tour(tour_id).general.customer_name == "Lim Family"


def test_manual_edit_saves_when_valid(assembler):
    tour_id = create_sample_tour(assembler)
    edited = assembler.get_tour(tour_id).model_copy(deep=True)
    edited.other_expenses.append(Expense(description="Tolls", amount=30_000))

    result = assembler.save_manual_edit(edited)

    assert result.ready_to_save
    saved = assembler.get_tour(tour_id)
    assert len(saved.other_expenses) == 2
    assert saved.financials.total_cost == 4 * 260_000 + 450_000 + 500_000 + 50_000 + 30_000


def test_store_failures_keep_the_local_copy():
    store = FlakyTourStore()
    assembler = TourRecordAssembler(store, InMemoryMasterDataStore(sample_master_data()))
    assembler.load()

    tour_id = create_sample_tour(assembler)

    assert assembler.get_tour(tour_id) is not None
    assert assembler.pending_ids == [tour_id]
    assert store.keys() == []

    # A remote snapshot must not clobber the unsynced tour.
    assembler.apply_remote_snapshot([])
    assert assembler.get_tour(tour_id) is not None

    store.offline = False
    assembler.update_tour(tour_id, lambda tour: tour)
    assert assembler.pending_ids == []
    assert store.keys() == ["dad-01"]


def test_remote_snapshot_replaces_synced_tours(assembler):
    tour_id = create_sample_tour(assembler)
    remote = assembler.get_tour(tour_id).model_copy(deep=True)
    remote.general.driver_name = "Mr. Hung"

    assembler.apply_remote_snapshot([remote])

    assert assembler.get_tour(tour_id).general.driver_name == "Mr. Hung"


def test_store_pushes_are_applied_to_other_sessions(tour_store, master_data):
    master_store = InMemoryMasterDataStore(master_data)
    device_a = TourRecordAssembler(tour_store, master_store)
    device_b = TourRecordAssembler(tour_store, master_store)
    device_a.load()
    device_b.load()

    tour_id = create_sample_tour(device_a)

    assert device_b.get_tour(tour_id) is not None
    device_a.close()
    device_b.close()


def test_delete_is_optimistic_when_the_store_fails():
    store = FlakyTourStore()
    store.offline = False
    assembler = TourRecordAssembler(store, InMemoryMasterDataStore(sample_master_data()))
    assembler.load()
    tour_id = create_sample_tour(assembler)

    store.offline = True
    assert assembler.delete_tour(tour_id) is True
    assert assembler.get_tour(tour_id) is None
    assert assembler.delete_tour(tour_id) is False


def test_import_from_extraction_resolves_guide_and_matches(assembler):
    extraction = ExtractionResult(
        general=ExtractionGeneralInfo(tour_code="GEM-01", customer_name="Lim Family", pax=2, guide_name="lan anh"),
        services=[ExtractionServiceCandidate(raw_name="Bà Nà Hills", quantity=2, price=800_000)],
        itinerary=[ExtractionItineraryItem(day=1, date="2026-04-01", location="Da Nang", activities=["Cable car"])],
        other_expenses=[ExtractionExpense(description="Water", amount=20_000)],
        advance=2_000_000,
    )

    tour = assembler.get_tour(assembler.create_from_extraction(extraction))

    assert tour.general.guide_id == "guide-lan-anh"
    assert tour.services[0].service_id == "svc-ba-na"
    assert tour.services[0].discrepancy == 50_000
    assert tour.per_diem[0].location == "Đà Nẵng"
    assert tour.itinerary[0].id
    assert tour.other_expenses[0].id
    assert tour.financials.total_cost == 2 * 850_000 + 450_000 + 20_000
    assert tour.financials.difference_to_advance == 2_000_000 - tour.financials.total_cost


def test_sqlite_stores_round_trip(tmp_path):
    conn = open_tour_database(tmp_path / "tours.db")

    master_store = SqliteMasterDataStore(conn, seed=load_master_data_seed())
    assert len(master_store.load().services) == 5

    tour_store = SqliteTourStore(conn)
    received = []
    tour_store.subscribe(received.append)

    assembler = TourRecordAssembler(tour_store, master_store)
    assembler.load()
    tour_id = create_sample_tour(assembler)

    stored = tour_store.fetch_all()
    assert len(stored) == 1
    assert stored[0] == assembler.get_tour(tour_id)
    assert received and received[-1][0].id == tour_id

    catalog = master_store.load()
    catalog.per_diem_rates[0].rate = Decimal("475000")
    master_store.save(catalog)
    assert assembler.master_data.per_diem_rates[0].rate == 475_000

    assembler.delete_tour(tour_id)
    assert tour_store.fetch_all() == []


def test_sqlite_errors_surface_as_store_errors():
    conn = connect_sqlite()
    store = SqliteTourStore(conn)
    with pytest.raises(StoreError):
        store.fetch_all()


def test_update_cannot_take_the_code_of_another_tour(assembler, tour_store):
    first_id = create_sample_tour(assembler, code="AAA-01")
    second_id = create_sample_tour(assembler, code="BBB-01")

    def steal_code(tour):
        tour.general.code = "aaa-01"
        return tour

    with pytest.raises(DuplicateTourCodeError) as excinfo:
        assembler.update_tour(second_id, steal_code)

    assert excinfo.value.owner_id == first_id
    assert assembler.get_tour(first_id) is not None
    assert assembler.get_tour(second_id).general.code == "BBB-01"
    assert sorted(tour_store.keys()) == ["aaa-01", "bbb-01"]


def test_manual_edit_reports_a_code_already_in_use(assembler, tour_store):
    create_sample_tour(assembler, code="AAA-01")
    second_id = create_sample_tour(assembler, code="BBB-01")
    edited = assembler.get_tour(second_id).model_copy(deep=True)
    edited.general.code = "AAA 01"

    result = assembler.save_manual_edit(edited)

    assert not result.ready_to_save
    assert result.blockers == ["Tour code is already used by another tour"]
    assert len(assembler.tours) == 2
    assert sorted(tour_store.keys()) == ["aaa-01", "bbb-01"]


def test_rename_with_failed_cleanup_keeps_a_single_copy():
    store = StickyDeleteTourStore()
    assembler = TourRecordAssembler(store, InMemoryMasterDataStore(sample_master_data()))
    assembler.load()
    tour_id = create_sample_tour(assembler, code="HAN-01")

    def rename(tour):
        tour.general.code = "HAN-02"
        return tour

    assembler.update_tour(tour_id, rename)

    assert sorted(store.keys()) == ["han-01", "han-02"]
    assert [tour.id for tour in assembler.tours] == [tour_id]
    assert assembler.get_tour(tour_id).general.code == "HAN-02"

    assembler.apply_remote_snapshot(store.fetch_all())
    assert [tour.general.code for tour in assembler.tours] == ["HAN-02"]


def test_remote_snapshot_keeps_the_newest_copy_of_a_tour(assembler):
    tour_id = create_sample_tour(assembler)
    current = assembler.get_tour(tour_id)
    stale = current.model_copy(update={"updated_at": "2000-01-01T00:00:00.000000Z"}, deep=True)
    stale.general.driver_name = "Stale driver"

    assembler.apply_remote_snapshot([current, stale])

    assert len(assembler.tours) == 1
    assert assembler.get_tour(tour_id).general.driver_name == "Mr. Phuc"


def test_migrations_are_recorded_and_not_reapplied(tmp_path):
    path = tmp_path / "tours.db"
    conn = open_tour_database(path)
    assert applied_migrations(conn) == ["001_initial_schema.sql"]
    conn.close()

    reopened = connect_sqlite(path)
    assert apply_migrations(reopened) == []
    assert applied_migrations(reopened) == ["001_initial_schema.sql"]
