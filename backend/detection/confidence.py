"""
Confidence threshold setting.

Values outside [0.5, 1.0] are rejected here, at the configuration boundary.
The aggregator trusts whatever threshold it is given.
"""

from core.config import MAX_CONFIDENCE_THRESHOLD, MIN_CONFIDENCE_THRESHOLD
from core.errors import ValidationError
from core.observable import Observable


def validate_confidence_threshold(value: float) -> float:
    try:
        threshold = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"Confidence threshold is not a number: {value!r}",
            user_message="Confidence threshold must be a number.",
        ) from exc
    if not MIN_CONFIDENCE_THRESHOLD <= threshold <= MAX_CONFIDENCE_THRESHOLD:
        raise ValidationError(
            f"Confidence threshold out of range: {threshold}",
            user_message=(
                f"Confidence threshold must be between "
                f"{MIN_CONFIDENCE_THRESHOLD:.0%} and {MAX_CONFIDENCE_THRESHOLD:.0%}."
            ),
            details={"min": MIN_CONFIDENCE_THRESHOLD, "max": MAX_CONFIDENCE_THRESHOLD, "value": threshold},
        )
    return threshold


class ConfidenceSetting(Observable[float]):
    """A validated threshold whose changes fan out to subscribers."""

    def __init__(self, value: float):
        super().__init__()
        self._value = validate_confidence_threshold(value)

    @property
    def value(self) -> float:
        return self._value

    @property
    def percent(self) -> int:
        return round(self._value * 100)

    def set(self, value: float) -> float:
        """Validate, store and broadcast a new threshold."""
        self._value = validate_confidence_threshold(value)
        self.notify(self._value)
        return self._value
