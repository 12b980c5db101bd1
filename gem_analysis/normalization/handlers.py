"""
Shape handler registry.

Each response shape variant has one handler that turns it into a
``NormalizedResponse``. Supporting a new layout means adding a variant in
``shapes.py`` and registering a handler here with ``@register_shape_handler``.
"""

import logging
from typing import Callable, Dict, List, Optional

from ..models import MeasurementObservation
from .observations import observations_from_aggregate, parse_image_entry
from .shapes import (
    AggregatedShape,
    ImageEntry,
    MixedShape,
    NormalizedResponse,
    PerImageShape,
    ResponseShape,
    ShapeKind,
)

logger = logging.getLogger(__name__)

ShapeHandler = Callable[[ResponseShape], NormalizedResponse]


class ShapeHandlerRegistry:
    """
    Registry of shape handlers keyed by ``ShapeKind``.

    Example:
        @register_shape_handler(ShapeKind.AGGREGATED)
        def handle_aggregated(shape: AggregatedShape) -> NormalizedResponse:
            ...
    """

    _handlers: Dict[ShapeKind, ShapeHandler] = {}

    @classmethod
    def register(cls, kind: ShapeKind, handler: ShapeHandler) -> None:
        cls._handlers[kind] = handler
        logger.debug(f"Registered shape handler: {kind.value} -> {handler.__name__}")

    @classmethod
    def get(cls, kind: ShapeKind) -> Optional[ShapeHandler]:
        return cls._handlers.get(kind)

    @classmethod
    def list_kinds(cls) -> List[ShapeKind]:
        return list(cls._handlers)

    @classmethod
    def handle(cls, shape: ResponseShape) -> NormalizedResponse:
        """
        Dispatch a shape to its handler.

        Raises:
            KeyError: If no handler is registered for the shape's kind
        """
        handler = cls.get(shape.kind)
        if handler is None:
            raise KeyError(f"No handler registered for shape: {shape.kind.value}")
        return handler(shape)


def register_shape_handler(kind: ShapeKind):
    """Decorator to register a shape handler."""

    def decorator(func: ShapeHandler) -> ShapeHandler:
        ShapeHandlerRegistry.register(kind, func)
        return func

    return decorator


def _parse_images(images: List[dict]):
    entries: List[ImageEntry] = []
    observations: List[MeasurementObservation] = []
    for position, raw in enumerate(images):
        if not isinstance(raw, dict):
            logger.debug(f"Skipping non-object per-image entry at position {position}")
            continue
        entry, found = parse_image_entry(raw, position)
        entries.append(entry)
        observations.extend(found)
    return entries, observations


@register_shape_handler(ShapeKind.AGGREGATED)
def handle_aggregated(shape: AggregatedShape) -> NormalizedResponse:
    return NormalizedResponse(
        kind=ShapeKind.AGGREGATED,
        observations=observations_from_aggregate(shape.aggregate),
        primary_hint=shape.primary_hint,
        extras=shape.extras,
    )


@register_shape_handler(ShapeKind.PER_IMAGE)
def handle_per_image(shape: PerImageShape) -> NormalizedResponse:
    entries, observations = _parse_images(shape.images)
    return NormalizedResponse(
        kind=ShapeKind.PER_IMAGE,
        observations=observations,
        images=entries,
        primary_hint=shape.primary_hint,
        extras=shape.extras,
    )


@register_shape_handler(ShapeKind.MIXED)
def handle_mixed(shape: MixedShape) -> NormalizedResponse:
    entries, observations = _parse_images(shape.images)
    observations.extend(observations_from_aggregate(shape.aggregate))
    return NormalizedResponse(
        kind=ShapeKind.MIXED,
        observations=observations,
        images=entries,
        primary_hint=shape.primary_hint,
        extras=shape.extras,
    )
