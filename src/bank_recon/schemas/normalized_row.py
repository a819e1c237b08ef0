"""
Normalized statement rows.

Converts the output of an external statement parser into canonical rows:
- value_date as UTC YYYY-MM-DD
- amount as an unsigned cent-quantized Decimal plus a direction
- an advisory category hint from keyword lookup

The whole batch fails if the parser failed or returned no movements.
An individual unparsable date falls back to today's UTC date (kept for
compatibility with statements produced by older exporters).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from ..errors import ParseFailure
from .ledger import Direction, to_cents

logger = logging.getLogger(__name__)

# Day-first formats only; month-first statements are not supported
_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
_DAY_FIRST_SLASH = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_DAY_FIRST_DASH = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")

# Keyword -> advisory category. First match wins.
CATEGORY_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("luz", "endesa", "iberdrola"), "Utilities › Electricity"),
    (("agua", "aqualia"), "Utilities › Water"),
    (("gas", "naturgy"), "Utilities › Gas"),
    (
        (
            "internet",
            "fibra",
            "movistar",
            "telefon",
            "telco",
            "vodafone",
            "orange",
            "telecomunicac",
        ),
        "Utilities › Telecom",
    ),
    (("alquiler", "rent"), "Rent › Income"),
    (("transferencia", "transfer"), "Transfers"),
)


@dataclass
class ParseResult:
    """Output contract of the external statement parser."""

    success: bool
    movements: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None


@dataclass
class NormalizedRow:
    """A canonical statement row, ready for ingestion."""

    value_date: str  # YYYY-MM-DD (UTC)
    description: str
    amount: Decimal  # unsigned, cent-quantized
    direction: Direction
    source_index: int
    category: str | None = None
    counterparty_text: str | None = None

    @property
    def signed_amount(self) -> Decimal:
        """Amount with sign restored from direction (OUT is negative)."""
        return -self.amount if self.direction == Direction.OUT else self.amount


def normalize_value_date(value: Any, today: date | None = None) -> str:
    """
    Normalize a parser date to UTC YYYY-MM-DD.

    Accepts date/datetime objects, ISO strings (optionally with a time part),
    DD/MM/YYYY and DD-MM-YYYY. Anything else yields today's UTC date.
    """
    if isinstance(value, datetime):
        return _utc_day(value)
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip() if value is not None else ""

    match = _ISO_DATE.match(text)
    if match and len(text) > 10:
        # Timestamp: an offset moves the value to its UTC day
        try:
            return _utc_day(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            pass
    if match:
        parsed = _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if parsed:
            return parsed.isoformat()

    for pattern in (_DAY_FIRST_SLASH, _DAY_FIRST_DASH):
        match = pattern.match(text)
        if match:
            parsed = _safe_date(int(match.group(3)), int(match.group(2)), int(match.group(1)))
            if parsed:
                return parsed.isoformat()

    fallback = today or datetime.now(timezone.utc).date()
    logger.warning("Could not parse date %r, using current date %s", value, fallback)
    return fallback.isoformat()


def _utc_day(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date().isoformat()


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_amount(value: Any) -> Decimal:
    """
    Parse a parser amount to Decimal.

    Raises:
        ParseFailure: If the value is not numeric
    """
    if isinstance(value, bool) or value is None:
        raise ParseFailure(f"Invalid amount: {value!r}")
    try:
        if isinstance(value, str):
            cleaned = value.replace("€", "").replace("$", "").replace(" ", "").strip()
            # Last separator is the decimal one ("1.200,50" and "1,200.50")
            if "," in cleaned and "." in cleaned:
                if cleaned.rfind(",") > cleaned.rfind("."):
                    cleaned = cleaned.replace(".", "").replace(",", ".")
                else:
                    cleaned = cleaned.replace(",", "")
            elif "," in cleaned:
                cleaned = cleaned.replace(",", ".")
            amount = Decimal(cleaned)
        else:
            amount = Decimal(str(value))
    except InvalidOperation:
        raise ParseFailure(f"Invalid amount: {value!r}") from None
    if not amount.is_finite():
        raise ParseFailure(f"Invalid amount: {value!r}")
    return amount


def infer_category(description: str | None) -> str | None:
    """Best-effort category hint from description keywords (advisory only)."""
    if not description:
        return None
    text = description.lower()
    for keywords, category in CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return None


def build_normalized_rows(parse_result: ParseResult, today: date | None = None) -> list[NormalizedRow]:
    """
    Convert parser output into canonical rows.

    Args:
        parse_result: Output of the statement parser
        today: Fallback date for unparsable dates (defaults to UTC today)

    Returns:
        Rows in parser order, source_index set to the row position

    Raises:
        ParseFailure: If the parser failed, returned nothing, or a row
            carries a non-numeric amount
    """
    if not parse_result.success:
        raise ParseFailure(parse_result.error or "Statement parser reported failure")
    if not parse_result.movements:
        raise ParseFailure("Statement contains no movements")

    rows: list[NormalizedRow] = []
    for index, movement in enumerate(parse_result.movements):
        amount = parse_amount(movement.get("amount"))
        description = str(movement.get("description") or "")
        rows.append(
            NormalizedRow(
                value_date=normalize_value_date(movement.get("date"), today=today),
                description=description,
                amount=to_cents(abs(amount)),
                direction=Direction.IN if amount >= 0 else Direction.OUT,
                source_index=index,
                category=infer_category(description),
                counterparty_text=movement.get("counterparty") or None,
            )
        )

    logger.debug("Normalized %d statement rows", len(rows))
    return rows
