import pytest

from tour_cost.models import Catalogs, Guide, MasterData, PerDiemRate, Service
from tour_cost.services import TourRecordAssembler
from tour_cost.stores import InMemoryMasterDataStore, InMemoryTourStore


def sample_master_data() -> MasterData:
    return MasterData(
        services=[
            Service(id="svc-ba-na", name="Vé tham quan Bà Nà Hills", category="Vé tham quan", price=850_000, unit="khách"),
            Service(id="svc-cruise", name="Du thuyền sông Hàn buổi tối", category="Trải nghiệm", price=1_200_000, unit="chuyến"),
            Service(id="svc-set-menu", name="Bữa tối set menu Việt Nam", category="Ẩm thực", price=260_000, unit="khách"),
        ],
        guides=[
            Guide(id="guide-tu", name="Cao Hữu Từ"),
            Guide(id="guide-lan-anh", name="Nguyễn Lan Anh"),
        ],
        per_diem_rates=[
            PerDiemRate(id="pd-da-nang", location="Đà Nẵng", rate=450_000),
            PerDiemRate(id="pd-hoi-an", location="Hội An", rate=500_000),
            PerDiemRate(id="pd-hue", location="Huế", rate=550_000),
        ],
        catalogs=Catalogs(nationalities=["Việt Nam", "Singapore"], service_types=["Vé tham quan"]),
    )


@pytest.fixture
def master_data() -> MasterData:
    return sample_master_data()


@pytest.fixture
def tour_store() -> InMemoryTourStore:
    return InMemoryTourStore()


@pytest.fixture
def assembler(tour_store, master_data) -> TourRecordAssembler:
    assembler = TourRecordAssembler(tour_store, InMemoryMasterDataStore(master_data))
    assembler.load()
    yield assembler
    assembler.close()
