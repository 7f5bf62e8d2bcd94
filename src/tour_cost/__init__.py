from .calculations import (
    calculate_per_diem_entries,
    group_services_by_itinerary,
    normalize_financial_summary,
    recompute,
)
from .core import ValidationResult, normalize_text, sanitize_tour_code, validate_tour
from .matching import build_tour_services, match_extracted_services, match_service
from .models import (
    Expense,
    ExtractionResult,
    FinancialSummary,
    ItineraryItem,
    MasterData,
    MatchedService,
    PerDiemEntry,
    Tour,
    TourGeneralInfo,
    TourService,
)
from .reports import filter_tours, summarize_tours
from .services import DuplicateTourCodeError, TourNotFoundError, TourRecordAssembler
from .ui import render_validation_summary

__all__ = [
    "DuplicateTourCodeError",
    "Expense",
    "ExtractionResult",
    "FinancialSummary",
    "ItineraryItem",
    "MasterData",
    "MatchedService",
    "PerDiemEntry",
    "Tour",
    "TourGeneralInfo",
    "TourNotFoundError",
    "TourRecordAssembler",
    "TourService",
    "ValidationResult",
    "build_tour_services",
    "calculate_per_diem_entries",
    "filter_tours",
    "group_services_by_itinerary",
    "match_extracted_services",
    "match_service",
    "normalize_financial_summary",
    "normalize_text",
    "recompute",
    "render_validation_summary",
    "sanitize_tour_code",
    "summarize_tours",
    "validate_tour",
]
