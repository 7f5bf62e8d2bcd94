"""Turning generative-AI responses into ``ExtractionResult`` records.

This module provides:
- a client that sends a photographed itinerary to the Gemini API
- a parser that finds the JSON object in the model's free-text answer
- normalization of the loosely typed payload (English or Vietnamese keys)
- a deterministic simulated extraction for mock mode
"""

from __future__ import annotations

import base64
import json
import logging
import re
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from tour_cost.config import AppConfig
from tour_cost.core import ZERO, to_amount, to_count
from tour_cost.models import (
    ExtractionExpense,
    ExtractionGeneralInfo,
    ExtractionItineraryItem,
    ExtractionResult,
    ExtractionServiceCandidate,
    MasterData,
)

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_DAY_MONTH_RE = re.compile(r"(\d{1,2})[/-](\d{1,2})(?:[/-](\d{2,4}))?")


class ExtractionError(ValueError):
    """Raised when the AI response cannot be turned into an extraction result."""

    def __init__(self, message: str, raw_response: str = ""):
        self.raw_preview = raw_response[:PREVIEW_LENGTH]
        if raw_response:
            message = f'{message}\n\nResponse preview: "{self.raw_preview}..."'
        super().__init__(message)


# -----------------------------
# Parsing helpers
# -----------------------------


def normalize_date(value: Any, today: Optional[date] = None) -> str:
    """Normalize ``dd/mm[/yyyy]`` or ISO input to ``yyyy-mm-dd``; unparseable text is kept."""
    if not isinstance(value, str):
        return ""
    trimmed = value.strip()
    if not trimmed:
        return ""

    iso = _ISO_DATE_RE.match(trimmed)
    if iso:
        return iso.group(0)

    match = _DAY_MONTH_RE.search(trimmed)
    if not match:
        return trimmed

    day, month = int(match.group(1)), int(match.group(2))
    raw_year = match.group(3)
    year = int(raw_year) if raw_year else (today or date.today()).year
    if year < 100:
        year += 2000
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return ""


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _record(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _records(value: Any) -> List[Dict[str, Any]]:
    return [item for item in _as_list(value) if isinstance(item, dict)]


def _build_general(data: Dict[str, Any], master_data: MasterData) -> ExtractionGeneralInfo:
    general = _record(data.get("general"))
    info = _record(data.get("thong_tin_chung"))
    fallback_nationality = master_data.catalogs.nationalities[0] if master_data.catalogs.nationalities else ""
    start_date, end_date = _itinerary_date_range(data)

    return ExtractionGeneralInfo(
        tour_code=_text(_first(general.get("tourCode"), info.get("ma_tour"))),
        customer_name=_text(_first(general.get("customerName"), info.get("ten_khach"))),
        client_company=_text(_first(general.get("clientCompany"), info.get("ten_cong_ty"))),
        nationality=_text(_first(general.get("nationality"), info.get("quoc_tich_khach"), fallback_nationality)),
        pax=to_count(_first(general.get("pax"), info.get("so_luong_khach"))),
        start_date=_text(_first(general.get("startDate"), start_date)),
        end_date=_text(_first(general.get("endDate"), end_date)),
        guide_name=_text(_first(general.get("guideName"), info.get("ten_guide"))),
        driver_name=_text(_first(general.get("driverName"), info.get("ten_lai_xe"))),
        notes=_text(general.get("notes")),
    )


def _build_services(data: Dict[str, Any], pax: int) -> List[ExtractionServiceCandidate]:
    per_pax_quantity = pax or 1
    candidates: List[ExtractionServiceCandidate] = []

    for item in _records(data.get("services")):
        candidates.append(
            ExtractionServiceCandidate(
                raw_name=_text(item.get("rawName")),
                quantity=to_count(item.get("quantity")) or per_pax_quantity,
                price=to_amount(item.get("price")),
                notes=_text(item.get("notes")),
            )
        )

    for index, item in enumerate(_records(data.get("danh_sach_chi_phi")), start=1):
        candidates.append(
            ExtractionServiceCandidate(
                raw_name=_text(item.get("ten_chi_phi")) or f"Chi phí {index}",
                quantity=per_pax_quantity,
                price=to_amount(item.get("so_tien_per_pax")),
                notes="Chi phí theo pax",
            )
        )

    meals = _record(data.get("an"))
    for key, label in (("an_trua", "Ăn trưa"), ("an_toi", "Ăn tối")):
        for index, item in enumerate(_records(meals.get(key)), start=1):
            dish = _text(item.get("ten_mon"))
            candidates.append(
                ExtractionServiceCandidate(
                    raw_name=f"{label} - {dish}" if dish else f"{label} {index}",
                    quantity=per_pax_quantity,
                    price=to_amount(item.get("so_tien_per_pax")),
                    notes=f"{label} per pax",
                )
            )

    return [c for c in candidates if c.raw_name or c.price > 0]


def _build_itinerary(data: Dict[str, Any]) -> List[ExtractionItineraryItem]:
    items = _records(data.get("itinerary"))
    if items:
        return [
            ExtractionItineraryItem(
                day=to_count(item.get("day")) or index,
                date=normalize_date(item.get("date")),
                location=_text(item.get("location")),
                activities=[_text(a) for a in _as_list(item.get("activities"))],
            )
            for index, item in enumerate(items, start=1)
        ]

    places = [
        _text(place.get("dia_diem_tham_quan"))
        for place in _records(data.get("danh_sach_dia_diem"))
        if place.get("dia_diem_tham_quan")
    ]
    return [
        ExtractionItineraryItem(
            day=index,
            date=normalize_date(_first(item.get("ngay_tham_quan"), item.get("date"), item.get("ngay"))),
            location=_text(item.get("tinh") or item.get("dia_diem")),
            activities=list(places),
        )
        for index, item in enumerate(_records(data.get("danh_sach_ngay_tham_quan")), start=1)
    ]


def _build_other_expenses(data: Dict[str, Any]) -> List[ExtractionExpense]:
    return [
        ExtractionExpense(
            description=_text(item.get("description")),
            amount=to_amount(item.get("amount")),
            date=normalize_date(item.get("date")),
            notes=_text(item.get("notes")),
        )
        for item in _records(data.get("otherExpenses"))
    ]


def _extract_tip(data: Dict[str, Any]) -> Decimal:
    if "companyTip" in data:
        return to_amount(data["companyTip"])
    tip = data.get("tip")
    if isinstance(tip, dict):
        if tip.get("co_tip") in (False, "false"):
            return ZERO
        return to_amount(tip.get("so_tien_tip"))
    return ZERO


def _itinerary_date_range(data: Dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    dates = [normalize_date(item.get("date")) for item in _records(data.get("itinerary"))]
    dates += [
        normalize_date(_first(item.get("ngay_tham_quan"), item.get("date"), item.get("ngay")))
        for item in _records(data.get("danh_sach_ngay_tham_quan"))
    ]
    dates = sorted(d for d in dates if d)
    if not dates:
        return None, None
    return dates[0], dates[-1]


def normalize_extraction_result(data: Dict[str, Any], master_data: MasterData) -> ExtractionResult:
    general = _build_general(data, master_data)
    advance = to_amount(_first(data.get("advance"), data.get("tam_ung")))
    collections = to_amount(
        _first(
            data.get("collectionsForCompany"),
            data.get("collectionForCompany"),
            data.get("thu_ho_cong_ty"),
            data.get("thu_ho"),
            data.get("collections"),
        )
    )
    tip = _extract_tip(data)

    return ExtractionResult(
        general=general,
        services=_build_services(data, general.pax),
        itinerary=_build_itinerary(data),
        other_expenses=_build_other_expenses(data),
        advance=advance or None,
        collections_for_company=collections or None,
        company_tip=tip or None,
    )


def parse_extraction_response(text: str, master_data: MasterData) -> ExtractionResult:
    if not text or not text.strip():
        raise ExtractionError("The AI service returned an empty response")

    match = _JSON_OBJECT_RE.search(text)
    if not match:
        raise ExtractionError("No JSON object found in the AI response", text)

    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Invalid JSON in the AI response: {exc.msg}", text) from exc
    if not isinstance(payload, dict):
        raise ExtractionError("The AI response JSON is not an object", text)

    result = normalize_extraction_result(payload, master_data)

    has_services = any(s.raw_name and s.price > 0 for s in result.services)
    has_itinerary = any(item.location or item.date for item in result.itinerary)
    general = result.general
    has_general = bool(general.tour_code or general.customer_name or general.pax > 0 or general.guide_name)
    if not (has_services or has_itinerary or has_general):
        raise ExtractionError("No meaningful tour information could be extracted", text)

    if not result.services:
        logger.warning("No services extracted from the document")
    if not result.itinerary:
        logger.warning("No itinerary extracted from the document")
    return result


# -----------------------------
# Prompt and client
# -----------------------------


def build_extraction_prompt(master_data: MasterData) -> str:
    services = "\n".join(f"- {s.name}: {s.price} VND" for s in master_data.services)
    guides = "\n".join(f"- {g.name}" for g in master_data.guides)
    nationalities = ", ".join(master_data.catalogs.nationalities)
    return (
        "Extract the tour programme in this image as JSON only, with no extra text.\n"
        "Shape: {\"general\": {\"tourCode\", \"customerName\", \"clientCompany\", \"pax\", "
        "\"nationality\", \"startDate\", \"endDate\", \"guideName\", \"driverName\", \"notes\"}, "
        "\"services\": [{\"rawName\", \"quantity\", \"price\", \"notes\"}], "
        "\"itinerary\": [{\"day\", \"date\", \"location\", \"activities\": []}], "
        "\"otherExpenses\": [{\"description\", \"amount\", \"date\", \"notes\"}], "
        "\"advance\", \"collectionsForCompany\", \"companyTip\"}.\n"
        "Dates are dd/mm/yyyy, missing numbers are 0 and missing text is \"\".\n"
        f"Prefer these catalog service names:\n{services}\n"
        f"The guide should be one of:\n{guides}\n"
        f"Nationality should be one of: {nationalities}\n"
    )


class GeminiExtractionClient:
    """Calls the Gemini generateContent endpoint, or simulates it in mock mode."""

    def __init__(self, config: AppConfig, http_client: Optional[httpx.Client] = None):
        self.config = config
        self._http = http_client

    def extract(
        self,
        content: bytes,
        mime_type: str,
        master_data: MasterData,
        prompt: Optional[str] = None,
    ) -> ExtractionResult:
        if self.config.mock_mode:
            logger.info("Mock mode: returning simulated extraction (%d bytes ignored)", len(content))
            return simulate_extraction(master_data)

        payload = {
            "contents": [
                {
                    "parts": [
                        {"text": prompt or build_extraction_prompt(master_data)},
                        {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(content).decode("ascii")}},
                    ]
                }
            ],
            "generationConfig": {"temperature": 0.1, "topK": 32, "topP": 1, "maxOutputTokens": 8192},
        }
        url = f"{self.config.gemini_endpoint.rstrip('/')}/{self.config.gemini_model}:generateContent"

        try:
            response = self._post(url, payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise ExtractionError(
                f"AI request failed with status {exc.response.status_code}", exc.response.text
            ) from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(f"AI request failed: {exc}") from exc

        text = _candidate_text(data)
        if not text:
            logger.error("Gemini response without content: %s", str(data)[:PREVIEW_LENGTH])
            raise ExtractionError("The AI service returned no content for this image", json.dumps(data))

        logger.info("Gemini returned %d chars of content", len(text))
        return parse_extraction_response(text, master_data)

    def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        params = {"key": self.config.gemini_api_key}
        if self._http is not None:
            return self._http.post(url, params=params, json=payload)
        with httpx.Client(timeout=self.config.request_timeout) as client:
            return client.post(url, params=params, json=payload)


def _candidate_text(data: Dict[str, Any]) -> str:
    try:
        return data["candidates"][0]["content"]["parts"][0].get("text", "")
    except (KeyError, IndexError, TypeError):
        return ""


# -----------------------------
# Mock mode
# -----------------------------


def simulate_extraction(master_data: MasterData, today: Optional[date] = None) -> ExtractionResult:
    """Deterministic sample extraction for a three-day Da Nang / Hoi An tour."""
    start = (today or date.today()) + timedelta(days=7)
    days = [start + timedelta(days=offset) for offset in range(3)]
    guide = master_data.guides[0].name if master_data.guides else "Tu"

    return ExtractionResult(
        general=ExtractionGeneralInfo(
            tour_code=f"GEM-{start:%Y-%m}-{start.day:02d}",
            customer_name="Lim Family",
            client_company="Asia Travel Partners",
            pax=4,
            nationality="Singapore",
            start_date=days[0].isoformat(),
            end_date=days[-1].isoformat(),
            guide_name=guide,
            driver_name="Mr. Phuc",
            notes="Vegetarian dinner on day 2, VIP queue for the Ba Na cable car.",
        ),
        services=[
            ExtractionServiceCandidate(raw_name="Bana Ticket", quantity=4, price=790_000, notes="VIP lane requested"),
            ExtractionServiceCandidate(raw_name="Du thuyền sông Hàn", quantity=1, price=1_200_000),
            ExtractionServiceCandidate(raw_name="set menu", quantity=4, price=240_000, notes="Vegetarian"),
        ],
        itinerary=[
            ExtractionItineraryItem(
                day=1,
                date=days[0].isoformat(),
                location="Da Nang",
                activities=["Airport pickup", "Marble Mountain visit", "Han River cruise"],
            ),
            ExtractionItineraryItem(
                day=2,
                date=days[1].isoformat(),
                location="Da Nang",
                activities=["Ba Na Hills cable car", "Golden Bridge"],
            ),
            ExtractionItineraryItem(
                day=3,
                date=days[2].isoformat(),
                location="Hoi An",
                activities=["Ancient town walking tour", "Lantern workshop"],
            ),
        ],
        other_expenses=[
            ExtractionExpense(description="Bottled water for guests", amount=120_000, date=days[0].isoformat()),
            ExtractionExpense(description="Parking fee at Marble Mountain", amount=50_000, date=days[0].isoformat()),
        ],
        advance=6_000_000,
        collections_for_company=3_500_000,
        company_tip=300_000,
    )
