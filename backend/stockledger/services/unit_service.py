# Overview: Unit normalization and linear quantity conversion between supported units.

"""
Unit conversion (authoritative)

- Quantities are Decimal with a fixed scale of 3 places, rounded ROUND_HALF_UP.
  Binary floats never take part in stock math.
- Each unit belongs to one family and has a linear factor to the family's base
  unit:  quantity_in_base = quantity * factor.
    mass:   g (base, 1), kg (1000)
    volume: ml (base, 1), l (1000)
    count:  pcs (opaque, 1)
- Converting between families is an error (kg -> l, pcs -> g).
- Same unit -> identity (only quantized to scale).
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from ..validation import ValidationError


QUANTITY_SCALE = 3
QUANTUM = Decimal(1).scaleb(-QUANTITY_SCALE)  # Decimal("0.001")

FAMILY_MASS = "mass"
FAMILY_VOLUME = "volume"
FAMILY_COUNT = "count"


@dataclass(frozen=True)
class UnitDefinition:
    symbol: str
    family: str
    factor: Decimal
    label: str


UNITS: dict[str, UnitDefinition] = {
    "g": UnitDefinition("g", FAMILY_MASS, Decimal("1"), "Gram"),
    "kg": UnitDefinition("kg", FAMILY_MASS, Decimal("1000"), "Kilogram"),
    "ml": UnitDefinition("ml", FAMILY_VOLUME, Decimal("1"), "Millilitre"),
    "l": UnitDefinition("l", FAMILY_VOLUME, Decimal("1000"), "Litre"),
    "pcs": UnitDefinition("pcs", FAMILY_COUNT, Decimal("1"), "Pieces"),
}

# Free-form spellings seen in product data entry
UNIT_ALIASES = {
    "gram": "g", "grams": "g", "gm": "g", "gms": "g",
    "kgs": "kg", "kilo": "kg", "kilogram": "kg", "kilograms": "kg",
    "millilitre": "ml", "millilitres": "ml", "milliliter": "ml", "milliliters": "ml",
    "litre": "l", "litres": "l", "liter": "l", "liters": "l", "ltr": "l", "lt": "l",
    "pc": "pcs", "piece": "pcs", "pieces": "pcs", "count": "pcs", "nos": "pcs",
    "unit": "pcs", "units": "pcs",
}


class UnsupportedUnitError(ValidationError):
    """Unit symbol is unknown, or the conversion crosses unit families."""

    def __init__(self, message: str, field: str | None = "unit"):
        super().__init__(message, field=field)


def normalize_unit(unit: str | None) -> str:
    """Map a unit spelling to its canonical symbol, or raise UnsupportedUnitError."""
    if unit is None or not isinstance(unit, str) or not unit.strip():
        raise UnsupportedUnitError("unit is required")
    key = unit.strip().lower()
    key = UNIT_ALIASES.get(key, key)
    if key not in UNITS:
        raise UnsupportedUnitError(f"Unsupported unit: {unit!r}")
    return key


def unit_family(unit: str) -> str:
    return UNITS[normalize_unit(unit)].family


def to_decimal(value) -> Decimal:
    """Convert int/str/Decimal/float input to Decimal without float artifacts."""
    if isinstance(value, bool):
        raise ValidationError("quantity must be a number", field="quantity")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("quantity must be a number", field="quantity")
    if not result.is_finite():
        raise ValidationError("quantity must be a finite number", field="quantity")
    return result


def quantize(value) -> Decimal:
    """Round to the fixed quantity scale (half-up)."""
    return to_decimal(value).quantize(QUANTUM, rounding=ROUND_HALF_UP)


def conversion_factor(from_unit: str, to_unit: str) -> Decimal:
    """
    Multiplier taking a quantity in from_unit to to_unit.

    Raises UnsupportedUnitError for unknown units or mismatched families.
    """
    src = UNITS[normalize_unit(from_unit)]
    dst = UNITS[normalize_unit(to_unit)]
    if src.symbol == dst.symbol:
        return Decimal("1")
    if src.family != dst.family:
        raise UnsupportedUnitError(
            f"Cannot convert {src.symbol} ({src.family}) to {dst.symbol} ({dst.family})"
        )
    return src.factor / dst.factor


def convert(quantity, from_unit: str, to_unit: str) -> Decimal:
    """
    Convert quantity from from_unit into to_unit, rounded to 3 places half-up.

    convert(Decimal("1.5"), "kg", "g") -> Decimal("1500.000")
    convert(Decimal("250"), "ml", "l") -> Decimal("0.250")
    """
    factor = conversion_factor(from_unit, to_unit)
    return quantize(to_decimal(quantity) * factor)


def supported_units() -> list[dict]:
    return [
        {
            "symbol": u.symbol,
            "label": u.label,
            "family": u.family,
            "factor_to_base": str(u.factor),
        }
        for u in UNITS.values()
    ]
