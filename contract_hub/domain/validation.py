from __future__ import annotations

import json
import math
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping

from contract_hub.domain.statuses import CONTRACT_TYPES
from contract_hub.errors import ValidationError


TITLE_MAX_CHARS = 200
DESCRIPTION_MAX_WORDS = 150
TARGET_CONDITIONS_MAX_WORDS = 150
MIN_TARGET_PERSONS = 1
MAX_TARGET_PERSONS = 20
TEXT_MAX_CHARS = 2000
LONG_TEXT_MAX_CHARS = 5000
REASON_MAX_CHARS = 1000

_CURRENCY_PATTERN = re.compile(r"^[A-Za-z]{3}$")
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class FieldErrors:
    def __init__(self) -> None:
        self._errors: Dict[str, List[str]] = {}

    def add(self, field: str, message: str) -> None:
        self._errors.setdefault(field, []).append(message)

    def __contains__(self, field: str) -> bool:
        return field in self._errors

    def raise_if_any(self) -> None:
        if self._errors:
            raise ValidationError(fields=self._errors)


def count_words(value: str | None) -> int:
    if not value:
        return 0
    return len(str(value).split())


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_number(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    # NaN and infinities cannot be stored or compared.
    return parsed if math.isfinite(parsed) else None


def _parse_int(value: Any) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def parse_iso_date(value: Any) -> date | None:
    raw = _clean_text(value)
    if not raw:
        return None
    normalized = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    try:
        return datetime.fromisoformat(normalized).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def parse_iso_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp as aware UTC, to the second.

    Date-only values mean midnight UTC and naive timestamps are read as UTC.
    """
    raw = _clean_text(value)
    if not raw:
        return None
    normalized = raw[:-1] + "+00:00" if raw.endswith(("Z", "z")) else raw
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).replace(microsecond=0)


def format_utc_timestamp(value: datetime) -> str:
    # Fixed width so stored values also order correctly as text.
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _nested(payload: Mapping[str, Any], group: str, key: str, flat_key: str) -> Any:
    nested = payload.get(group)
    if isinstance(nested, Mapping) and key in nested:
        return nested.get(key)
    return payload.get(flat_key)


def _has_nested(payload: Mapping[str, Any], group: str, key: str, flat_key: str) -> bool:
    nested = payload.get(group)
    if isinstance(nested, Mapping) and key in nested:
        return True
    return flat_key in payload


def _validate_currency(errors: FieldErrors, value: Any, default_currency: str) -> str:
    currency = _clean_text(value) or default_currency
    if not _CURRENCY_PATTERN.match(currency):
        errors.add("currency", "Currency must be a 3-letter code")
    return currency.upper()


def _validate_deliverables(errors: FieldErrors, value: Any) -> str:
    if value is None or value == "":
        return "[]"
    if not isinstance(value, list):
        errors.add("deliverables", "Deliverables must be a list")
        return "[]"
    cleaned = []
    for index, item in enumerate(value):
        if isinstance(item, str):
            item = {"title": item}
        if not isinstance(item, Mapping):
            errors.add("deliverables", f"Deliverable {index + 1} is invalid")
            continue
        title = _clean_text(item.get("title"))
        if not title:
            errors.add("deliverables", f"Deliverable {index + 1} needs a title")
            continue
        if len(title) > TITLE_MAX_CHARS:
            errors.add("deliverables", f"Deliverable {index + 1} title cannot exceed {TITLE_MAX_CHARS} characters")
            continue
        entry = {"title": title}
        description = _clean_text(item.get("description"))
        if description:
            entry["description"] = description
        cleaned.append(entry)
    return json.dumps(cleaned, separators=(",", ":"))


def validate_contract_payload(
    payload: Mapping[str, Any],
    *,
    existing: Mapping[str, Any] | None = None,
    today: date | None = None,
    default_currency: str = "EUR",
) -> Dict[str, Any]:
    """Validate contract fields and return the cleaned column values.

    With ``existing`` the payload is a partial edit: missing fields keep their
    stored value and the merged record is validated as a whole. All violations
    are collected before raising.
    """
    base = dict(existing or {})
    errors = FieldErrors()
    cleaned: Dict[str, Any] = {}

    def provided(key: str) -> bool:
        return existing is None or key in payload

    if provided("title"):
        title = _clean_text(payload.get("title"))
        if not title:
            errors.add("title", "Contract title is required")
        elif len(title) > TITLE_MAX_CHARS:
            errors.add("title", f"Title cannot exceed {TITLE_MAX_CHARS} characters")
        cleaned["title"] = title

    if provided("contract_type"):
        contract_type = _clean_text(payload.get("contract_type"))
        if not contract_type:
            errors.add("contract_type", "Contract type is required")
        elif contract_type not in CONTRACT_TYPES:
            errors.add("contract_type", "Invalid contract type")
        cleaned["contract_type"] = contract_type

    if provided("description"):
        description = _clean_text(payload.get("description"))
        if not description:
            errors.add("description", "Description is required")
        elif count_words(description) > DESCRIPTION_MAX_WORDS:
            errors.add("description", f"Description cannot exceed {DESCRIPTION_MAX_WORDS} words")
        cleaned["description"] = description

    if provided("target_conditions"):
        target_conditions = _clean_text(payload.get("target_conditions"))
        if count_words(target_conditions) > TARGET_CONDITIONS_MAX_WORDS:
            errors.add(
                "target_conditions",
                f"Target conditions cannot exceed {TARGET_CONDITIONS_MAX_WORDS} words",
            )
        cleaned["target_conditions"] = target_conditions or None

    if provided("target_persons"):
        target_persons = _parse_int(payload.get("target_persons"))
        if target_persons is None or not MIN_TARGET_PERSONS <= target_persons <= MAX_TARGET_PERSONS:
            errors.add(
                "target_persons",
                f"Target persons must be between {MIN_TARGET_PERSONS} and {MAX_TARGET_PERSONS}",
            )
        cleaned["target_persons"] = target_persons

    budget_touched = existing is None
    for key, flat_key in (("minimum", "budget_minimum"), ("maximum", "budget_maximum")):
        if existing is None or _has_nested(payload, "budget", key, flat_key):
            budget_touched = True
            amount = _parse_number(_nested(payload, "budget", key, flat_key))
            if amount is None:
                errors.add("budget", f"{key.capitalize()} budget is required")
            elif amount < 0:
                errors.add("budget", f"{key.capitalize()} budget must be a positive number")
            cleaned[flat_key] = amount
    if budget_touched and "budget" not in errors:
        minimum = cleaned.get("budget_minimum", base.get("budget_minimum"))
        maximum = cleaned.get("budget_maximum", base.get("budget_maximum"))
        if minimum is not None and maximum is not None and float(maximum) < float(minimum):
            errors.add("budget", "Maximum budget must be greater than or equal to minimum budget")

    if existing is None or _has_nested(payload, "budget", "currency", "currency"):
        cleaned["currency"] = _validate_currency(
            errors,
            _nested(payload, "budget", "currency", "currency"),
            str(base.get("currency") or default_currency),
        )

    dates_touched = existing is None
    for key in ("start_date", "end_date"):
        if provided(key):
            dates_touched = True
            parsed = parse_iso_date(payload.get(key))
            if parsed is None:
                label = "Start" if key == "start_date" else "End"
                errors.add(key, f"{label} date is required in ISO-8601 format")
            cleaned[key] = parsed.isoformat() if parsed else None
    if "start_date" in cleaned and cleaned["start_date"] and today is not None:
        if date.fromisoformat(cleaned["start_date"]) < today:
            errors.add("start_date", "Start date cannot be in the past")
    if dates_touched and "start_date" not in errors and "end_date" not in errors:
        start = cleaned.get("start_date", base.get("start_date"))
        end = cleaned.get("end_date", base.get("end_date"))
        if start and end and str(end) <= str(start):
            errors.add("end_date", "End date must be after start date")

    errors.raise_if_any()
    return cleaned


def validate_offer_payload(payload: Mapping[str, Any], *, default_currency: str = "EUR") -> Dict[str, Any]:
    errors = FieldErrors()

    amount = _parse_number(payload.get("amount"))
    if amount is None:
        errors.add("amount", "Offer amount is required")
    elif amount < 0:
        errors.add("amount", "Offer amount must be a positive number")

    currency = _validate_currency(errors, payload.get("currency"), default_currency)

    start = parse_iso_date(_nested(payload, "timeline", "start_date", "proposed_start_date"))
    end = parse_iso_date(_nested(payload, "timeline", "end_date", "proposed_end_date"))
    if start is None:
        errors.add("timeline", "Proposed start date is required in ISO-8601 format")
    if end is None:
        errors.add("timeline", "Proposed end date is required in ISO-8601 format")
    if start and end and end <= start:
        errors.add("timeline", "Proposed end date must be after start date")

    description = _clean_text(payload.get("description"))
    if not description:
        errors.add("description", "Offer description is required")
    elif len(description) > TEXT_MAX_CHARS:
        errors.add("description", f"Description cannot exceed {TEXT_MAX_CHARS} characters")

    deliverables = _validate_deliverables(errors, payload.get("deliverables"))

    terms = _clean_text(payload.get("terms"))
    if len(terms) > LONG_TEXT_MAX_CHARS:
        errors.add("terms", f"Terms cannot exceed {LONG_TEXT_MAX_CHARS} characters")

    errors.raise_if_any()
    return {
        "amount": amount,
        "currency": currency,
        "proposed_start_date": start.isoformat(),
        "proposed_end_date": end.isoformat(),
        "description": description,
        "deliverables": deliverables,
        "terms": terms or None,
    }


def validate_request_payload(payload: Mapping[str, Any], *, default_currency: str = "EUR") -> Dict[str, Any]:
    errors = FieldErrors()

    service_name = _clean_text(payload.get("service_name"))
    if not service_name:
        errors.add("service_name", "Service name is required")
    elif len(service_name) > TITLE_MAX_CHARS:
        errors.add("service_name", f"Service name cannot exceed {TITLE_MAX_CHARS} characters")

    amount = _parse_number(_nested(payload, "budget", "amount", "budget_amount"))
    if amount is None:
        errors.add("budget", "Budget amount is required")
    elif amount < 0:
        errors.add("budget", "Budget amount must be a positive number")

    currency = _validate_currency(errors, _nested(payload, "budget", "currency", "currency"), default_currency)

    persons = _parse_int(payload.get("number_of_persons"))
    if persons is None or not MIN_TARGET_PERSONS <= persons <= MAX_TARGET_PERSONS:
        errors.add(
            "number_of_persons",
            f"Number of persons must be between {MIN_TARGET_PERSONS} and {MAX_TARGET_PERSONS}",
        )

    start = parse_iso_datetime(_nested(payload, "timeline", "start_time", "start_time"))
    end = parse_iso_datetime(_nested(payload, "timeline", "end_time", "end_time"))
    if start is None or end is None:
        errors.add("timeline", "Start and end time are required in ISO-8601 format")
    elif end <= start:
        errors.add("timeline", "End time must be after start time")

    description = _clean_text(payload.get("description"))
    if not description:
        errors.add("description", "Description is required")
    elif len(description) > TEXT_MAX_CHARS:
        errors.add("description", f"Description cannot exceed {TEXT_MAX_CHARS} characters")

    deliverables = _validate_deliverables(errors, payload.get("deliverables"))

    cover_letter = _clean_text(payload.get("cover_letter"))
    if len(cover_letter) > LONG_TEXT_MAX_CHARS:
        errors.add("cover_letter", f"Cover letter cannot exceed {LONG_TEXT_MAX_CHARS} characters")

    errors.raise_if_any()
    return {
        "service_name": service_name,
        "budget_amount": amount,
        "currency": currency,
        "number_of_persons": persons,
        "start_time": format_utc_timestamp(start),
        "end_time": format_utc_timestamp(end),
        "description": description,
        "deliverables": deliverables,
        "cover_letter": cover_letter or None,
    }


def require_reason(payload: Mapping[str, Any], field: str = "reason") -> str:
    reason = _clean_text(payload.get(field))
    errors = FieldErrors()
    if not reason:
        errors.add(field, "A reason is required")
    elif len(reason) > REASON_MAX_CHARS:
        errors.add(field, f"Reason cannot exceed {REASON_MAX_CHARS} characters")
    errors.raise_if_any()
    return reason


def optional_notes(payload: Mapping[str, Any], field: str = "notes") -> str | None:
    notes = _clean_text(payload.get(field))
    if len(notes) > TEXT_MAX_CHARS:
        raise ValidationError(fields={field: [f"Notes cannot exceed {TEXT_MAX_CHARS} characters"]})
    return notes or None


def validate_email(value: Any) -> str:
    email = _clean_text(value).lower()
    if not email or not _EMAIL_PATTERN.match(email):
        raise ValidationError(fields={"email": ["A valid email is required"]})
    return email
