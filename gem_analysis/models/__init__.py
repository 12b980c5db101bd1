from .analysis import (
    ATTRIBUTE_FIELDS,
    ATTRIBUTES,
    CATEGORICAL_ATTRIBUTES,
    NUMERIC_ATTRIBUTES,
    AnalysisRun,
    ExtractedField,
    ExtractionMethod,
    ImageAsset,
    Item,
    MeasurementObservation,
    PrimaryImageSelection,
    RunStatus,
    derived_field_name,
    manual_field_name,
)

__all__ = [
    "ATTRIBUTE_FIELDS",
    "ATTRIBUTES",
    "CATEGORICAL_ATTRIBUTES",
    "NUMERIC_ATTRIBUTES",
    "AnalysisRun",
    "ExtractedField",
    "ExtractionMethod",
    "ImageAsset",
    "Item",
    "MeasurementObservation",
    "PrimaryImageSelection",
    "RunStatus",
    "derived_field_name",
    "manual_field_name",
]
