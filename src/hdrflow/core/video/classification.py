"""Coarse content classification from bitrate per pixel."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ...config import default_config as defaults
from .types import VideoMetadata

HEURISTIC_CONFIDENCE = 0.7


class ContentType(Enum):
    """Grain based content categories."""
    FILM = "film"
    LIGHT_GRAIN = "light_grain"
    HEAVY_GRAIN = "heavy_grain"


@dataclass
class ContentClassification:
    """Classification result.

    Attributes:
        content_type: Assigned category
        confidence: Heuristic confidence, 0 when no bitrate was available
        bits_per_pixel: Source bitrate divided by frame area
    """
    content_type: ContentType
    confidence: float
    bits_per_pixel: Optional[float] = None


def classify_content(metadata: VideoMetadata,
                     light_grain_bpp: float = defaults.LIGHT_GRAIN_BPP,
                     heavy_grain_bpp: float = defaults.HEAVY_GRAIN_BPP) -> ContentClassification:
    """Classify content by source bitrate per pixel.

    The thresholds are configuration values, not validated constants.
    The result is informational and does not feed the adjustment
    calculator.

    Args:
        metadata: Video metadata
        light_grain_bpp: Lower bound for light grain
        heavy_grain_bpp: Lower bound for heavy grain

    Returns:
        Content classification
    """
    if not metadata.bitrate:
        return ContentClassification(content_type=ContentType.FILM, confidence=0.0)

    bpp = metadata.bitrate / float(metadata.width * metadata.height)
    if bpp > heavy_grain_bpp:
        content_type = ContentType.HEAVY_GRAIN
    elif bpp > light_grain_bpp:
        content_type = ContentType.LIGHT_GRAIN
    else:
        content_type = ContentType.FILM
    return ContentClassification(
        content_type=content_type,
        confidence=HEURISTIC_CONFIDENCE,
        bits_per_pixel=bpp
    )
