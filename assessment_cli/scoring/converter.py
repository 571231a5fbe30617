from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from assessment_cli.errors import ConfigurationError, ValidationError

MAPPING_TYPES = ("direct", "percentage", "scaled")

TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class ConversionResult:
    converted_score: Optional[Decimal]
    max_score: Optional[Decimal]  # the scale the converted score is stored against
    warning: Optional[str] = None

    @property
    def flagged(self) -> bool:
        return self.warning is not None


def to_decimal(value: Any, field: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number, got {value!r}")
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}")
    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number, got {value!r}")
    return number


def round_score(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _require_positive(value: Optional[Decimal], field: str) -> Decimal:
    if value is None:
        raise ValidationError(f"{field} is required")
    if value <= 0:
        raise ValidationError(f"{field} must be greater than zero, got {value}")
    return value


def _proportion(
    raw_score: Decimal, raw_max: Decimal, scale: Decimal
) -> ConversionResult:
    if raw_score > raw_max:
        return ConversionResult(
            round_score(scale),
            scale,
            f"Raw score {raw_score} exceeds CBT maximum {raw_max}; capped at {round_score(scale)}",
        )
    return ConversionResult(round_score(raw_score / raw_max * scale), scale)


def convert(
    raw_score: Any,
    raw_max: Any,
    mapping_type: str,
    max_score_override: Any = None,
    target_max_score: Any = None,
) -> ConversionResult:
    """
    Convert a raw CBT score onto an assessment component's scale.

    direct      raw score as is, clamped to [0, target_max_score]
    percentage  raw_score / raw_max * target_max_score
    scaled      raw_score / raw_max * max_score_override; the override replaces
                the target max score and no structure cap is applied on top

    Results are rounded to two decimal places, half up. A missing raw score
    (attempt not taken) converts to None rather than zero. Scores above their
    maximum are capped and come back with a warning so the row can be flagged
    for review.

    Raises:
        ValidationError: unknown mapping type, negative or non-numeric scores,
            a zero raw maximum, or a scaled mapping without a positive override
        ConfigurationError: direct/percentage mapping without a target max score
    """
    if mapping_type not in MAPPING_TYPES:
        raise ValidationError(
            f"Unknown score mapping type '{mapping_type}', expected one of {', '.join(MAPPING_TYPES)}"
        )

    raw = to_decimal(raw_score, "raw_score")
    maximum = to_decimal(raw_max, "raw_max")
    override = to_decimal(max_score_override, "max_score_override")
    target = to_decimal(target_max_score, "target_max_score")

    if mapping_type == "scaled":
        scale = _require_positive(override, "max_score_override")
    else:
        if target is None:
            raise ConfigurationError("target_max_score is required for this mapping")
        scale = _require_positive(target, "target_max_score")

    if raw is None:
        return ConversionResult(None, scale, "No score recorded for this attempt")
    if raw < 0:
        raise ValidationError(f"raw_score cannot be negative, got {raw}")

    if mapping_type == "direct":
        if raw > scale:
            return ConversionResult(
                round_score(scale),
                scale,
                f"Raw score {raw} exceeds maximum {scale}; truncated to {round_score(scale)}",
            )
        return ConversionResult(round_score(raw), scale)

    if maximum is None or maximum == 0:
        raise ValidationError("raw_max must be greater than zero")
    if maximum < 0:
        raise ValidationError(f"raw_max cannot be negative, got {maximum}")

    return _proportion(raw, maximum, scale)
