"""Encoder parameter adjustments derived from the resolved approach."""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from ..core.errors import ConfigurationError
from ..core.video.types import HdrFormat, DolbyVisionProfile
from ..config import default_config as defaults
from .approach import ApproachKind, EncodingApproach
from ..utils.logging import get_logger

logger = get_logger(__name__)

SDR_CRF_RANGE = (18.0, 28.0)
HDR_CRF_RANGE = (18.0, 24.0)

HDR_COMPLEXITY = {
    HdrFormat.HDR10: 1.2,
    HdrFormat.HDR10_PLUS: 1.4,
    HdrFormat.HLG: 1.15,
}


@dataclass(frozen=True)
class DolbyVisionProfileAdjustment:
    """Per-profile Dolby Vision constants.

    Attributes:
        crf_adjustment: CRF delta
        bitrate_multiplier: Bitrate multiplier
        complexity: Relative encoding complexity
        crf_range: Recommended CRF range
    """
    crf_adjustment: float
    bitrate_multiplier: float
    complexity: float
    crf_range: Tuple[float, float]


# Dual-layer profile 7 loses its enhancement layer, so the base layer
# must carry more quality.
DV_PROFILE_ADJUSTMENTS: Dict[DolbyVisionProfile, DolbyVisionProfileAdjustment] = {
    DolbyVisionProfile.PROFILE_5: DolbyVisionProfileAdjustment(1.0, 1.6, 1.4, (17.0, 21.0)),
    DolbyVisionProfile.PROFILE_7: DolbyVisionProfileAdjustment(0.5, 2.0, 1.8, (16.0, 19.0)),
    DolbyVisionProfile.PROFILE_8_1: DolbyVisionProfileAdjustment(1.0, 1.8, 1.5, (16.0, 20.0)),
    DolbyVisionProfile.PROFILE_8_2: DolbyVisionProfileAdjustment(1.0, 1.8, 1.6, (16.0, 19.0)),
    DolbyVisionProfile.PROFILE_8_4: DolbyVisionProfileAdjustment(1.0, 1.8, 1.5, (16.0, 20.0)),
}
DV_UNKNOWN_PROFILE_ADJUSTMENT = DolbyVisionProfileAdjustment(0.5, 2.0, 1.8, (16.0, 18.0))
DV_GENERIC_ADJUSTMENT = DV_PROFILE_ADJUSTMENTS[DolbyVisionProfile.PROFILE_8_1]


@dataclass(frozen=True)
class AdjustmentSettings:
    """Externally supplied values the calculator depends on.

    Attributes:
        hdr_crf_adjustment: CRF delta for HDR10, HDR10+ and HLG
        hdr_bitrate_multiplier: Bitrate multiplier for HDR content
        vbv_bufsize: VBV buffer size in kbit, required for Dolby Vision
        vbv_maxrate: VBV max rate in kbit/s, required for Dolby Vision
        dv_profile_specific: Use per-profile Dolby Vision constants
    """
    hdr_crf_adjustment: float = defaults.HDR_CRF_ADJUSTMENT
    hdr_bitrate_multiplier: float = defaults.HDR_BITRATE_MULTIPLIER
    vbv_bufsize: Optional[int] = None
    vbv_maxrate: Optional[int] = None
    dv_profile_specific: bool = defaults.DV_PROFILE_SPECIFIC_ADJUSTMENTS

    @classmethod
    def from_config(cls, config) -> "AdjustmentSettings":
        """Build settings from a ``WorkflowConfig``."""
        return cls(
            hdr_crf_adjustment=config.hdr.crf_adjustment,
            hdr_bitrate_multiplier=config.hdr.bitrate_multiplier,
            vbv_bufsize=config.dolby_vision.vbv_bufsize,
            vbv_maxrate=config.dolby_vision.vbv_maxrate,
            dv_profile_specific=config.dolby_vision.profile_specific_adjustments
        )


@dataclass(frozen=True)
class EncodingAdjustments:
    """Encoder parameter deltas for one file.

    Attributes:
        crf_adjustment: Signed CRF delta
        bitrate_multiplier: Bitrate multiplier, at least 1.0
        encoding_complexity: Relative complexity score
        requires_vbv: Whether constrained buffering is required
        vbv_bufsize: VBV buffer size in kbit
        vbv_maxrate: VBV max rate in kbit/s
        recommended_crf_range: Range a caller should clamp its CRF to
    """
    crf_adjustment: float = 0.0
    bitrate_multiplier: float = 1.0
    encoding_complexity: float = 1.0
    requires_vbv: bool = False
    vbv_bufsize: Optional[int] = None
    vbv_maxrate: Optional[int] = None
    recommended_crf_range: Tuple[float, float] = SDR_CRF_RANGE

    def __post_init__(self):
        if self.requires_vbv and (self.vbv_bufsize is None or self.vbv_maxrate is None):
            raise ValueError("VBV is required but buffer size or max rate is missing")
        if self.bitrate_multiplier < 1.0:
            raise ValueError(f"Bitrate multiplier below 1.0: {self.bitrate_multiplier}")
        low, high = self.recommended_crf_range
        if low > high:
            raise ValueError(f"Invalid CRF range: {self.recommended_crf_range}")

    @classmethod
    def identity(cls) -> "EncodingAdjustments":
        return cls()


def _dv_profile_adjustment(profile: DolbyVisionProfile,
                           settings: AdjustmentSettings) -> DolbyVisionProfileAdjustment:
    if not settings.dv_profile_specific:
        return DV_GENERIC_ADJUSTMENT
    adjustment = DV_PROFILE_ADJUSTMENTS.get(profile)
    if adjustment is None:
        logger.warning("Unknown Dolby Vision profile %s, using conservative settings", profile.value)
        return DV_UNKNOWN_PROFILE_ADJUSTMENT
    return adjustment


def _require_vbv(settings: AdjustmentSettings, approach: EncodingApproach) -> Tuple[int, int]:
    if settings.vbv_bufsize is None or settings.vbv_maxrate is None:
        raise ConfigurationError(
            f"VBV buffer size and max rate must be configured for {approach.label}",
            "Set dolby_vision.vbv_bufsize and dolby_vision.vbv_maxrate"
        )
    return settings.vbv_bufsize, settings.vbv_maxrate


def _hdr_adjustments(hdr_format: HdrFormat, settings: AdjustmentSettings) -> EncodingAdjustments:
    return EncodingAdjustments(
        crf_adjustment=settings.hdr_crf_adjustment,
        bitrate_multiplier=settings.hdr_bitrate_multiplier,
        encoding_complexity=HDR_COMPLEXITY[hdr_format],
        recommended_crf_range=HDR_CRF_RANGE
    )


def more_conservative(first: EncodingAdjustments,
                      second: EncodingAdjustments) -> EncodingAdjustments:
    """Combine two adjustments field by field, keeping the safer value.

    Safer means the lower CRF delta, the larger bitrate multiplier and
    complexity, and the lower bound of each CRF range end. Values are
    never averaged.
    """
    bufsize = first.vbv_bufsize if first.vbv_bufsize is not None else second.vbv_bufsize
    maxrate = first.vbv_maxrate if first.vbv_maxrate is not None else second.vbv_maxrate
    return EncodingAdjustments(
        crf_adjustment=min(first.crf_adjustment, second.crf_adjustment),
        bitrate_multiplier=max(first.bitrate_multiplier, second.bitrate_multiplier),
        encoding_complexity=max(first.encoding_complexity, second.encoding_complexity),
        requires_vbv=first.requires_vbv or second.requires_vbv,
        vbv_bufsize=bufsize,
        vbv_maxrate=maxrate,
        recommended_crf_range=(
            min(first.recommended_crf_range[0], second.recommended_crf_range[0]),
            min(first.recommended_crf_range[1], second.recommended_crf_range[1])
        )
    )


def calculate_adjustments(approach: EncodingApproach,
                          settings: Optional[AdjustmentSettings] = None) -> EncodingAdjustments:
    """Map an approach to encoder parameter adjustments.

    Args:
        approach: Resolved encoding approach
        settings: Configured HDR and VBV values

    Returns:
        Encoding adjustments

    Raises:
        ConfigurationError: If a Dolby Vision approach has no VBV values
    """
    settings = settings or AdjustmentSettings()

    if approach.kind is ApproachKind.SDR:
        return EncodingAdjustments.identity()

    if approach.kind is ApproachKind.HDR:
        return _hdr_adjustments(approach.hdr.format, settings)

    bufsize, maxrate = _require_vbv(settings, approach)
    profile = _dv_profile_adjustment(approach.dolby_vision.profile, settings)
    dv_adjustments = EncodingAdjustments(
        crf_adjustment=profile.crf_adjustment,
        bitrate_multiplier=profile.bitrate_multiplier,
        encoding_complexity=profile.complexity,
        requires_vbv=True,
        vbv_bufsize=bufsize,
        vbv_maxrate=maxrate,
        recommended_crf_range=profile.crf_range
    )

    if approach.kind is ApproachKind.DOLBY_VISION:
        return dv_adjustments

    logger.info("Applying dual Dolby Vision + HDR10+ adjustments")
    return more_conservative(dv_adjustments, _hdr_adjustments(HdrFormat.HDR10_PLUS, settings))


def recommended_crf(adjustments: EncodingAdjustments, base_crf: float) -> float:
    """Apply the CRF delta and clamp to the recommended range."""
    low, high = adjustments.recommended_crf_range
    return max(low, min(base_crf + adjustments.crf_adjustment, high))


def recommended_bitrate(adjustments: EncodingAdjustments, base_bitrate: int) -> int:
    """Scale a base bitrate by the multiplier."""
    return int(base_bitrate * adjustments.bitrate_multiplier)


def vbv_settings(adjustments: EncodingAdjustments) -> Optional[Tuple[int, int]]:
    """Return (bufsize, maxrate) when VBV is required."""
    if not adjustments.requires_vbv:
        return None
    return adjustments.vbv_bufsize, adjustments.vbv_maxrate
