import math
from collections.abc import Mapping
from dataclasses import dataclass
from numbers import Real
from typing import Any


class InvalidDetectionError(ValueError):
    """Raised when a raw detection is missing fields or carries bad numbers."""


def _finite_number(value: Any, field: str) -> float:
    # bool is a Real subclass but never a valid coordinate or score
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidDetectionError(f"{field} must be a number, got {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise InvalidDetectionError(f"{field} must be finite, got {value!r}")
    return value


@dataclass(frozen=True)
class Detection:
    """
    A single detector output for one frame.

    Attributes:
        class_name (str): Category label reported by the detector.
        score (float): Detection confidence in [0, 1].
        bbox (tuple): Bounding box [x, y, width, height] in detector space.
    """

    class_name: str
    score: float
    bbox: tuple[float, float, float, float]

    @classmethod
    def from_raw(cls, raw: Any) -> "Detection":
        """
        Build a validated detection from a detector result.

        Accepts an existing Detection or a mapping with "class" (or
        "class_name"), "score" and "bbox" keys.

        Raises:
            InvalidDetectionError: If a field is missing or malformed.
        """
        if isinstance(raw, Detection):
            class_name, score, bbox = raw.class_name, raw.score, raw.bbox
        elif isinstance(raw, Mapping):
            class_name = raw.get("class", raw.get("class_name"))
            score = raw.get("score")
            bbox = raw.get("bbox")
        else:
            raise InvalidDetectionError(f"unsupported detection type {type(raw).__name__}")

        if not isinstance(class_name, str) or not class_name:
            raise InvalidDetectionError(f"class must be a non-empty string, got {class_name!r}")

        score = _finite_number(score, "score")
        if not 0.0 <= score <= 1.0:
            raise InvalidDetectionError(f"score must be in [0, 1], got {score!r}")

        if isinstance(bbox, (str, bytes)) or not hasattr(bbox, "__len__") or len(bbox) != 4:
            raise InvalidDetectionError(f"bbox must hold 4 numbers, got {bbox!r}")
        bbox = tuple(_finite_number(v, f"bbox[{i}]") for i, v in enumerate(bbox))

        return cls(class_name, score, bbox)
