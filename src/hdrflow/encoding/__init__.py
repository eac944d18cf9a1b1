"""Approach resolution and encoder parameter adjustments."""

from .approach import (
    ApproachKind,
    EncodingApproach,
    HdrPayload,
    DolbyVisionPayload,
    resolve_approach,
)
from .adjustments import (
    AdjustmentSettings,
    EncodingAdjustments,
    calculate_adjustments,
)

__all__ = [
    'ApproachKind',
    'EncodingApproach',
    'HdrPayload',
    'DolbyVisionPayload',
    'resolve_approach',
    'AdjustmentSettings',
    'EncodingAdjustments',
    'calculate_adjustments',
]
