"""
Normalization of free-text listing values into typed fields.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.scraping.errors import ParseError
from app.scraping.types import REQUIRED_FIELDS, ExtractedRecord

# Thousands groups must be exactly three digits behind one repeated separator,
# so trailing counts ("3 bed", "12 photos") never join the amount.
_NUMBER_TOKEN = re.compile(
    r"\d{1,3}(?P<sep>[\s\u00a0\u202f',.])\d{3}(?!\d)(?:(?P=sep)\d{3}(?!\d))*(?:[.,]\d+)?"
    r"|\d+(?:[.,]\d+)?"
)
_INTEGER_TOKEN = re.compile(r"\d+")
_SIGNED_DECIMAL = re.compile(r"[-+]?\d+(?:[.,]\d+)?")
_MULTIPLIER = re.compile(r"^\s*(million|mil|mln|m|thousand|k)\b", flags=re.IGNORECASE)
_MULTIPLIERS = {
    "million": Decimal(1_000_000),
    "mil": Decimal(1_000_000),
    "mln": Decimal(1_000_000),
    "m": Decimal(1_000_000),
    "thousand": Decimal(1_000),
    "k": Decimal(1_000),
}

_SQUARE_METRE_UNITS = ("m²", "m2", "sqm", "sq m", "sq. m", "square metres", "square meters", "square metre", "square meter")
_AREA_UNITS: tuple[tuple[str, Decimal], ...] = (
    ("hectares", Decimal(10_000)),
    ("hectare", Decimal(10_000)),
    ("ha", Decimal(10_000)),
    ("acres", Decimal("4046.8564224")),
    ("acre", Decimal("4046.8564224")),
    ("ac", Decimal("4046.8564224")),
    ("sq ft", Decimal("0.09290304")),
    ("sqft", Decimal("0.09290304")),
    ("ft²", Decimal("0.09290304")),
    ("ft2", Decimal("0.09290304")),
    ("square feet", Decimal("0.09290304")),
    *((unit, Decimal(1)) for unit in _SQUARE_METRE_UNITS),
)

INTEGER_FIELDS = ("bedrooms", "bathrooms", "garage_spaces")
AREA_FIELDS = ("land_size", "floor_size")
TEXT_FIELDS = ("province", "city", "property_type")


def parse_decimal_token(token: str) -> Decimal | None:
    """
    Parse a numeric token that may carry thousands separators.

    When both `.` and `,` appear, the last one is the decimal mark. A single
    separator occurring once is a decimal mark unless exactly three digits
    follow it and the integer part is non-zero. Repeated separators are
    always thousands separators.
    """

    compact = re.sub(r"[\s  ']", "", token)
    if not compact:
        return None

    decimal_mark: str | None = None
    if "." in compact and "," in compact:
        decimal_mark = "." if compact.rfind(".") > compact.rfind(",") else ","
    else:
        for mark in (".", ","):
            if compact.count(mark) == 1:
                head, tail = compact.split(mark)
                if len(tail) != 3 or head.strip("0") == "":
                    decimal_mark = mark

    if decimal_mark is None:
        digits = re.sub(r"[.,]", "", compact)
        fraction = ""
    else:
        head, _, fraction = compact.rpartition(decimal_mark)
        digits = re.sub(r"[.,]", "", head)

    try:
        return Decimal(f"{digits or '0'}.{fraction or '0'}")
    except InvalidOperation:
        return None


class ValueNormalizer:
    """
    Convert raw extracted strings into an ExtractedRecord.
    """

    @staticmethod
    def parse_price(text: str | None) -> int | None:
        """
        Parse a price such as `R 1,250,000`, `$1.250.000` or `1.2m` into an integer amount.
        """

        if not text:
            return None
        match = _NUMBER_TOKEN.search(text)
        if match is None:
            return None
        amount = parse_decimal_token(match.group(0))
        if amount is None:
            return None

        multiplier = _MULTIPLIER.match(text[match.end():])
        if multiplier is not None:
            amount *= _MULTIPLIERS[multiplier.group(1).lower()]
        return int(amount.to_integral_value(rounding=ROUND_HALF_UP))

    @staticmethod
    def parse_area(text: str | None) -> float | None:
        """
        Parse a land/floor size into square metres.

        A bare number is taken as square metres; an unknown unit yields None.
        """

        if not text:
            return None
        match = _NUMBER_TOKEN.search(text)
        if match is None:
            return None
        value = parse_decimal_token(match.group(0))
        if value is None:
            return None

        remainder = text[match.end():].strip().lower()
        if not remainder:
            return float(value)
        for unit, factor in _AREA_UNITS:
            if remainder.startswith(unit):
                tail = remainder[len(unit):]
                if tail and tail[0].isalpha():
                    continue
                return round(float(value * factor), 4)
        return None

    @staticmethod
    def parse_int(text: str | None) -> int | None:
        if not text:
            return None
        match = _INTEGER_TOKEN.search(text)
        if match is None:
            return None
        return int(match.group(0))

    @staticmethod
    def parse_coordinate(text: str | None, *, limit: float) -> float | None:
        if not text:
            return None
        match = _SIGNED_DECIMAL.search(text)
        if match is None:
            return None
        value = float(match.group(0).replace(",", "."))
        if abs(value) > limit:
            return None
        return value

    @staticmethod
    def clean_text(text: str | None) -> str | None:
        if text is None:
            return None
        cleaned = re.sub(r"\s+", " ", text).strip()
        return cleaned or None

    def normalize(
        self,
        raw: Mapping[str, str],
        *,
        scraped_at: datetime | None = None,
    ) -> ExtractedRecord:
        """
        Build a record from raw field strings.

        Optional fields that fail to parse are dropped to None. A missing or
        empty required field raises ParseError.
        """

        required: dict[str, str] = {}
        for field in REQUIRED_FIELDS:
            value = self.clean_text(raw.get(field))
            if value is None:
                raise ParseError(f"Required field '{field}' is missing or empty", field=field)
            required[field] = value

        optional_text = {field: self.clean_text(raw.get(field)) for field in TEXT_FIELDS}

        return ExtractedRecord(
            title=required["title"],
            address=required["address"],
            source_url=required["source_url"],
            province=optional_text["province"] or "unknown",
            city=optional_text["city"] or "unknown",
            property_type=(optional_text["property_type"] or "unknown").lower(),
            suburb=self.clean_text(raw.get("suburb")),
            price=self.parse_price(raw.get("price")),
            bedrooms=self.parse_int(raw.get("bedrooms")),
            bathrooms=self.parse_int(raw.get("bathrooms")),
            garage_spaces=self.parse_int(raw.get("garage_spaces")),
            land_size=self.parse_area(raw.get("land_size")),
            floor_size=self.parse_area(raw.get("floor_size")),
            latitude=self.parse_coordinate(raw.get("latitude"), limit=90.0),
            longitude=self.parse_coordinate(raw.get("longitude"), limit=180.0),
            scraped_at=scraped_at or datetime.now(timezone.utc),
        )
