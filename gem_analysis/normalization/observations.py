"""
Turn loosely structured response sections into measurement observations.

Field names drift between model versions (``weight_ct`` vs ``weight``,
``color_assessment.primary_color`` vs ``color``), so every attribute is
looked up through an ordered alias list.
"""

import math
import re
from typing import Any, Dict, List, Optional, Tuple

from config.constants import DEFAULT_OBSERVATION_CONFIDENCE

from ..models import ExtractionMethod, MeasurementObservation
from .shapes import ImageEntry

NUMERIC_KEYS: Dict[str, Tuple[str, ...]] = {
    "weight": ("weight_ct", "weight_carats", "weight"),
    "length": ("length_mm", "length"),
    "width": ("width_mm", "width"),
    "depth": ("depth_mm", "depth", "thickness_mm", "height_mm"),
}

CATEGORICAL_KEYS: Dict[str, Tuple[str, ...]] = {
    "color": ("color", "color_assessment", "inferred_color"),
    "cut": ("shape_cut", "shape", "cut", "cut_quality", "cut_assessment", "inferred_cut"),
    "clarity": ("clarity_observations", "clarity", "clarity_grade", "clarity_assessment", "inferred_clarity"),
}

# Keys to look inside when a categorical value is an object
CATEGORICAL_NESTED_KEYS: Dict[str, Tuple[str, ...]] = {
    "color": ("primary_color", "primary", "color", "hue", "name", "description", "value"),
    "cut": ("shape", "cut_type", "cut_style", "cut", "style", "type", "description", "value"),
    "clarity": ("grade", "assessment", "level", "clarity", "description", "value"),
}

MEASUREMENT_CONTAINERS = (
    "measurements_cross_verified",
    "measurement_summary",
    "measurements",
    "dimensions",
    "inferred_dimensions",
)

GAUGE_SUBJECTS: Dict[str, str] = {
    "weight": "weight",
    "mass": "weight",
    "carat": "weight",
    "carats": "weight",
    "length": "length",
    "width": "width",
    "depth": "depth",
    "thickness": "depth",
    "height": "depth",
}

TEXT_KEYS = ("visual_observations", "observations", "description", "notes", "ocr_text", "label_text")
QUALITY_KEYS = ("quality_scores", "sub_scores", "scores", "quality")
CLASSIFICATION_KEYS = ("image_classification", "image_type", "classification", "category")

_NUMBER = re.compile(r"-?\d+(?:[.,]\d+)?")


def coerce_confidence(value: Any) -> Optional[float]:
    """Confidence in [0, 1]; percentages (e.g. 95) are scaled down."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        match = _NUMBER.search(value)
        if not match:
            return None
        value = match.group(0).replace(",", ".")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(number):
        return None
    if number > 1.0:
        number = number / 100.0
    return max(0.0, min(1.0, number))


def coerce_number(value: Any) -> Optional[float]:
    """Positive number from a number or a string such as ``"8,34 ct"``."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        match = _NUMBER.search(value)
        if not match:
            return None
        number = float(match.group(0).replace(",", "."))
    else:
        return None
    if not math.isfinite(number):
        return None
    return number if number > 0 else None


def coerce_text(value: Any, nested_keys: Tuple[str, ...] = ()) -> Optional[str]:
    """Text from a string, or from the first usable nested key of an object."""
    if isinstance(value, str):
        text = value.strip()
        return text or None
    if isinstance(value, dict):
        for key in nested_keys:
            if key in value:
                text = coerce_text(value[key], nested_keys)
                if text:
                    return text
        return None
    if isinstance(value, list):
        for element in value:
            text = coerce_text(element, nested_keys)
            if text:
                return text
    return None


def _unpack(raw: Any) -> Tuple[Any, Optional[float], Optional[str], Optional[int]]:
    """(value, confidence, unit, image_index) from a scalar or ``{value, ...}``."""
    if not isinstance(raw, dict):
        return raw, None, None, None

    value = raw.get("value", raw.get("reading_value", raw.get("reading")))
    confidence = coerce_confidence(raw.get("confidence"))
    unit = raw.get("unit") if isinstance(raw.get("unit"), str) else None

    image_index = _as_index(raw.get("image_index"))
    sources = raw.get("sources")
    if image_index is None and isinstance(sources, list):
        ranked = [
            s for s in sources
            if isinstance(s, dict) and _as_index(s.get("image_index")) is not None
        ]
        ranked.sort(key=lambda s: -(coerce_confidence(s.get("confidence")) or 0.0))
        if ranked:
            image_index = _as_index(ranked[0].get("image_index"))

    return value, confidence, unit, image_index


def _as_index(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        index = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return index if index >= 1 else None


def numeric_observations(
    container: Dict[str, Any],
    source: str,
    fallback_confidence: Optional[float],
    image_index: Optional[int] = None,
) -> List[MeasurementObservation]:
    """Direct-field observations for weight/length/width/depth in one object."""
    observations = []
    for attribute, keys in NUMERIC_KEYS.items():
        for key in keys:
            if key not in container:
                continue
            value, confidence, unit, reported_index = _unpack(container[key])
            number = coerce_number(value)
            if number is None:
                continue
            observations.append(
                MeasurementObservation(
                    attribute=attribute,
                    value=number,
                    confidence=_pick_confidence(confidence, fallback_confidence),
                    method=ExtractionMethod.DIRECT_FIELD,
                    image_index=reported_index if reported_index is not None else image_index,
                    unit=unit,
                    source=f"{source}.{key}",
                )
            )
            break
    return observations


def categorical_observations(
    container: Dict[str, Any],
    source: str,
    fallback_confidence: Optional[float],
    image_index: Optional[int] = None,
) -> List[MeasurementObservation]:
    """Direct-field observations for color/cut/clarity in one object."""
    observations = []
    for attribute, keys in CATEGORICAL_KEYS.items():
        nested = CATEGORICAL_NESTED_KEYS[attribute]
        for key in keys:
            if key not in container:
                continue
            raw = container[key]
            text = coerce_text(raw, nested)
            if not text:
                continue
            confidence = coerce_confidence(raw.get("confidence")) if isinstance(raw, dict) else None
            observations.append(
                MeasurementObservation(
                    attribute=attribute,
                    value=text,
                    confidence=_pick_confidence(confidence, fallback_confidence),
                    method=ExtractionMethod.DIRECT_FIELD,
                    image_index=image_index,
                    source=f"{source}.{key}",
                )
            )
            break
    return observations


def observations_from_aggregate(aggregate: Dict[str, Any]) -> List[MeasurementObservation]:
    """Observations from a consolidated/aggregated section."""
    overall = None
    for key in ("overall_confidence", "confidence"):
        overall = coerce_confidence(aggregate.get(key))
        if overall is not None:
            break

    observations: List[MeasurementObservation] = []
    for container_name in MEASUREMENT_CONTAINERS:
        container = aggregate.get(container_name)
        if isinstance(container, dict):
            observations.extend(
                numeric_observations(container, f"aggregate.{container_name}", overall)
            )

    observations.extend(numeric_observations(aggregate, "aggregate", overall))
    observations.extend(categorical_observations(aggregate, "aggregate", overall))
    return observations


def gauge_observations(
    readings: List[Dict[str, Any]],
    image_index: int,
    fallback_confidence: Optional[float],
) -> List[MeasurementObservation]:
    """Instrument-reading observations from ``measurements_detected`` entries."""
    observations = []
    for reading in readings:
        subject = str(
            reading.get("subject") or reading.get("measurement_type") or reading.get("type") or ""
        ).strip().lower()
        unit = reading.get("unit") if isinstance(reading.get("unit"), str) else None

        attribute = GAUGE_SUBJECTS.get(subject)
        if attribute is None and unit and unit.strip().lower() in ("ct", "carat", "carats"):
            attribute = "weight"
        if attribute is None:
            continue

        value, confidence, _, _ = _unpack(reading)
        number = coerce_number(value)
        if number is None:
            continue

        device = reading.get("device") or reading.get("device_type") or "instrument"
        observations.append(
            MeasurementObservation(
                attribute=attribute,
                value=number,
                confidence=_pick_confidence(confidence, fallback_confidence),
                method=ExtractionMethod.INSTRUMENT_READING,
                image_index=image_index,
                unit=unit,
                source=f"image[{image_index}].{device}",
            )
        )
    return observations


def parse_image_entry(raw: Dict[str, Any], position: int) -> Tuple[ImageEntry, List[MeasurementObservation]]:
    """
    Parse one per-image analysis.

    Args:
        raw: The per-image object from the response
        position: Zero-based position in the response list, used when the
            model omits ``image_index``

    Returns:
        Tuple of (image entry, observations from this image)
    """
    image_index = _as_index(raw.get("image_index", raw.get("index"))) or position + 1
    confidence = coerce_confidence(raw.get("confidence"))

    classification = None
    for key in CLASSIFICATION_KEYS:
        classification = coerce_text(raw.get(key), ("type", "category", "label", "value"))
        if classification:
            break

    texts: List[str] = []
    for key in TEXT_KEYS:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            texts.append(value.strip())
        elif isinstance(value, list):
            texts.extend(v.strip() for v in value if isinstance(v, str) and v.strip())

    quality_scores: Dict[str, Any] = {}
    for key in QUALITY_KEYS:
        if isinstance(raw.get(key), dict):
            quality_scores = dict(raw[key])
            break

    readings_raw = raw.get("measurements_detected") or raw.get("gauge_readings") or []
    readings = [r for r in readings_raw if isinstance(r, dict)] if isinstance(readings_raw, list) else []

    entry = ImageEntry(
        image_index=image_index,
        classification=classification,
        confidence=confidence,
        texts=texts,
        quality_scores=quality_scores,
        disqualified=bool(raw.get("disqualified") or raw.get("is_disqualified")),
        gauge_readings=readings,
    )

    observations: List[MeasurementObservation] = []
    measurements = raw.get("measurements") or raw.get("extracted_measurements")
    if isinstance(measurements, dict):
        observations.extend(
            numeric_observations(measurements, f"image[{image_index}].measurements", None, image_index)
        )
    observations.extend(gauge_observations(readings, image_index, confidence))
    observations.extend(
        categorical_observations(raw, f"image[{image_index}]", confidence, image_index)
    )
    return entry, observations


def _pick_confidence(reported: Optional[float], fallback: Optional[float]) -> float:
    if reported is not None:
        return reported
    if fallback is not None:
        return fallback
    return DEFAULT_OBSERVATION_CONFIDENCE
