from __future__ import annotations

from typing import Optional, Sequence

from tour_cost.core import ZERO, generate_id, normalize_text
from tour_cost.models import (
    ExtractionResult,
    ExtractionServiceCandidate,
    MatchedService,
    Service,
    TourService,
)


def find_catalog_match(raw_name: str, catalog: Sequence[Service]) -> Optional[Service]:
    """Return the first catalog service whose normalized name contains ``raw_name``."""
    needle = normalize_text(raw_name)
    if not needle:
        return None
    for service in catalog:
        if needle in normalize_text(service.name):
            return service
    return None


def match_service(candidate: ExtractionServiceCandidate, catalog: Sequence[Service]) -> MatchedService:
    service = find_catalog_match(candidate.raw_name, catalog)
    if service is None:
        # Without a catalog anchor the document price is billed as-is.
        return MatchedService(
            candidate=candidate,
            service=None,
            normalized_price=candidate.price,
            discrepancy=ZERO,
        )
    return MatchedService(
        candidate=candidate,
        service=service,
        normalized_price=service.price,
        discrepancy=service.price - candidate.price,
    )


def match_extracted_services(extraction: ExtractionResult, catalog: Sequence[Service]) -> list[MatchedService]:
    return [match_service(candidate, catalog) for candidate in extraction.services]


def build_tour_services(matches: Sequence[MatchedService]) -> list[TourService]:
    lines: list[TourService] = []
    for match in matches:
        candidate = match.candidate
        lines.append(
            TourService(
                id=generate_id(),
                service_id=match.service.id if match.service else generate_id(),
                description=match.service.name if match.service else candidate.raw_name,
                quantity=candidate.quantity,
                unit_price=match.normalized_price,
                source_price=candidate.price,
                discrepancy=match.normalized_price - candidate.price,
                notes=candidate.notes,
            )
        )
    return lines


def count_discrepancies(matches: Sequence[MatchedService]) -> int:
    return sum(1 for match in matches if match.discrepancy != 0)
