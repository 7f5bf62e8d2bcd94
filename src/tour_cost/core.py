from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
import re
from typing import TYPE_CHECKING, Any
import unicodedata
from uuid import uuid4

if TYPE_CHECKING:
    from tour_cost.models import Tour


ISO_TS = "%Y-%m-%dT%H:%M:%S.%fZ"

ZERO = Decimal("0")

_THOUSANDS_COMMA_RE = re.compile(r",(?=\d{3}(?:\D|$))")
_THOUSANDS_DOT_RE = re.compile(r"\.(?=\d{3}(?:\D|$))")


@dataclass
class ValidationResult:
    ready_to_save: bool
    blockers: list[str]


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime(ISO_TS)


def generate_id() -> str:
    return uuid4().hex


def normalize_text(value: str | None) -> str:
    """Case-fold, strip diacritics and trim, so "Đà Nẵng" == "da nang"."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", value.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    # U+0111 has no decomposition, it is a letter of its own.
    return stripped.replace("đ", "d").strip()


def sanitize_tour_code(code: str) -> str:
    return re.sub(r"[^a-z0-9-]", "-", code.strip().lower())


def to_amount(value: Any) -> Decimal:
    """Coerce a loosely typed amount into a finite Decimal, falling back to 0."""
    if isinstance(value, bool):
        return Decimal(1) if value else ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    if isinstance(value, (int, float)):
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return ZERO
        return amount if amount.is_finite() else ZERO
    if isinstance(value, str):
        cleaned = re.sub(r"[^0-9,.-]", "", value)
        cleaned = _THOUSANDS_COMMA_RE.sub("", cleaned)
        cleaned = _THOUSANDS_DOT_RE.sub("", cleaned)
        cleaned = cleaned.replace(",", ".")
        try:
            amount = Decimal(cleaned)
        except InvalidOperation:
            return ZERO
        return amount if amount.is_finite() else ZERO
    return ZERO


def to_count(value: Any) -> int:
    return int(to_amount(value))


def clamp_amount(value: Any) -> Decimal:
    return max(ZERO, to_amount(value))


def validate_tour(tour: Tour) -> ValidationResult:
    blockers: list[str] = []
    general = tour.general
    if not general.code.strip():
        blockers.append("Tour code is required")
    if not general.customer_name.strip():
        blockers.append("Customer name must not be empty")
    if not general.guide_id:
        blockers.append("A guide must be assigned")
    if not general.start_date or not general.end_date:
        blockers.append("Start and end dates are both required")
    if general.pax < 0:
        blockers.append("Pax must not be negative")
    for service in tour.services:
        if service.quantity < 0:
            blockers.append(f"{service.description}: quantity must not be negative")
        if service.unit_price < 0:
            blockers.append(f"{service.description}: unit price must not be negative")
    for expense in tour.other_expenses:
        if expense.amount < 0:
            blockers.append(f"{expense.description or 'Expense'}: amount must not be negative")
    return ValidationResult(ready_to_save=not blockers, blockers=blockers)
