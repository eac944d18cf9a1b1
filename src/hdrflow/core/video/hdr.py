"""Dynamic range format detection.

Detection runs in two passes. The cheap pass only looks at stream tags
already present in ``VideoMetadata``. The expensive side data pass is run
only when the cheap pass shows the content is plausibly not SDR, since
Dolby Vision and HDR10+ can only be confirmed from container side data.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ...config import default_config as defaults
from .probe import is_hdr10_plus_side_data, parse_master_display_string, parse_light_level
from .types import (
    VideoMetadata, SideDataInfo, FormatSignal, HdrFormat, DolbyVisionProfile
)
from ...utils.logging import get_logger

logger = get_logger(__name__)

# Confidence scores
CONFIDENCE_FULL_MATCH = 0.9
CONFIDENCE_PQ_ONLY = 0.7
CONFIDENCE_BT2020_ONLY = 0.5
CONFIDENCE_STATIC_METADATA_BONUS = 0.05
CONFIDENCE_DOVI_RECORD = 1.0
CONFIDENCE_DOVI_NO_RPU = 0.3
CONFIDENCE_DV_CODEC_TAG = 0.8
CONFIDENCE_DV_PROFILE_STRING = 0.7
CONFIDENCE_DYNAMIC_METADATA = 0.95

DV_CODEC_TAGS = {"dvh1", "dvhe", "dva1", "dvav"}

# Transfer functions that are known SDR curves
SDR_TRANSFERS = {
    "bt709", "bt470m", "bt470bg", "smpte170m", "smpte240m", "iec61966-2-1",
    "iec61966-2-4", "gamma22", "gamma28", "linear", "log100", "log316", "bt1361e"
}


@dataclass
class DetectionPatterns:
    """Identifier patterns, matched as lowercase substrings."""
    color_space: List[str] = field(default_factory=lambda: list(defaults.COLOR_SPACE_PATTERNS))
    transfer: List[str] = field(default_factory=lambda: list(defaults.TRANSFER_PATTERNS))
    hlg: List[str] = field(default_factory=lambda: list(defaults.HLG_PATTERNS))

    @classmethod
    def from_config(cls, hdr_config) -> "DetectionPatterns":
        return cls(
            color_space=list(hdr_config.color_space_patterns),
            transfer=list(hdr_config.transfer_patterns),
            hlg=list(hdr_config.hlg_patterns)
        )


@dataclass
class DetectionResult:
    """Outcome of format detection for one file.

    Attributes:
        metadata: Normalized probe metadata
        signals: One signal per detector
        side_data: Side data pass results, None when the pass was skipped
    """
    metadata: VideoMetadata
    signals: Dict[HdrFormat, FormatSignal]
    side_data: Optional[SideDataInfo] = None

    @property
    def side_data_probed(self) -> bool:
        return self.side_data is not None


def _matches(value: Optional[str], patterns: Iterable[str]) -> bool:
    if not value:
        return False
    text = value.lower()
    return any(pattern.lower() in text for pattern in patterns)


def _is_bt2020(metadata: VideoMetadata, patterns: DetectionPatterns) -> bool:
    return (
        _matches(metadata.color_primaries, patterns.color_space) or
        _matches(metadata.color_space, patterns.color_space)
    )


def _has_static_metadata(metadata: VideoMetadata,
                         side_data: Optional[SideDataInfo]) -> Dict[str, bool]:
    mastering = parse_master_display_string(metadata.mastering_display) is not None
    light = parse_light_level(
        f"{metadata.max_cll},{metadata.max_fall}" if metadata.max_cll else None
    ) is not None
    if side_data is not None:
        mastering = mastering or side_data.mastering_display is not None
        light = light or side_data.content_light_level is not None
    return {"mastering_display": mastering, "content_light_level": light}


def detect_hdr10(metadata: VideoMetadata,
                 side_data: Optional[SideDataInfo] = None,
                 patterns: Optional[DetectionPatterns] = None) -> FormatSignal:
    """Detect HDR10 from transfer and color tags.

    Full confidence requires a PQ transfer and BT.2020 primaries or color
    space. BT.2020 color with a missing or unrecognized transfer still
    yields a low confidence signal, as does PQ without BT.2020 tags.

    Args:
        metadata: Video metadata
        side_data: Optional side data pass results
        patterns: Identifier patterns

    Returns:
        HDR10 format signal
    """
    patterns = patterns or DetectionPatterns()
    is_pq = _matches(metadata.color_transfer, patterns.transfer)
    is_hlg = _matches(metadata.color_transfer, patterns.hlg)
    bt2020 = _is_bt2020(metadata, patterns)
    static = _has_static_metadata(metadata, side_data)

    if is_pq and bt2020:
        confidence = CONFIDENCE_FULL_MATCH
        confidence += sum(CONFIDENCE_STATIC_METADATA_BONUS for present in static.values() if present)
        return FormatSignal(
            format=HdrFormat.HDR10, detected=True,
            confidence=min(confidence, 1.0), details=static
        )

    if is_pq:
        return FormatSignal(
            format=HdrFormat.HDR10, detected=True,
            confidence=CONFIDENCE_PQ_ONLY, details=dict(static, primaries_missing=True)
        )

    transfer = (metadata.color_transfer or "").lower()
    transfer_unknown = not transfer or (transfer not in SDR_TRANSFERS and not is_hlg)
    if bt2020 and transfer_unknown:
        logger.warning(
            "BT.2020 color without a recognized transfer (%s), assuming HDR10",
            metadata.color_transfer or "missing"
        )
        return FormatSignal(
            format=HdrFormat.HDR10, detected=True,
            confidence=CONFIDENCE_BT2020_ONLY, details=dict(static, transfer_missing=True)
        )

    return FormatSignal.absent(HdrFormat.HDR10)


def detect_hlg(metadata: VideoMetadata,
               patterns: Optional[DetectionPatterns] = None) -> FormatSignal:
    """Detect HLG from the transfer function alone."""
    patterns = patterns or DetectionPatterns()
    if not _matches(metadata.color_transfer, patterns.hlg):
        return FormatSignal.absent(HdrFormat.HLG)
    confidence = CONFIDENCE_FULL_MATCH if _is_bt2020(metadata, patterns) else CONFIDENCE_PQ_ONLY
    return FormatSignal(format=HdrFormat.HLG, detected=True, confidence=confidence)


def _flag(record: Dict, key: str, default: bool) -> bool:
    value = record.get(key)
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _find_dovi_record(metadata: VideoMetadata,
                      side_data: Optional[SideDataInfo]) -> Optional[Dict]:
    if side_data is not None and side_data.dovi_record is not None:
        return side_data.dovi_record
    for entry in metadata.side_data_list:
        if "dv_profile" in entry or "dovi" in str(entry.get("side_data_type", "")).lower():
            return entry
    return None


def detect_dolby_vision(metadata: VideoMetadata,
                        side_data: Optional[SideDataInfo] = None) -> FormatSignal:
    """Detect Dolby Vision and its profile.

    A DOVI configuration record is authoritative. Without one, the codec
    tag and codec profile string are weaker hints.

    Args:
        metadata: Video metadata
        side_data: Optional side data pass results

    Returns:
        Dolby Vision format signal
    """
    record = _find_dovi_record(metadata, side_data)
    if record is not None:
        compat = record.get("bl_signal_compatibility_id", record.get("bl_compatible_id"))
        try:
            compat = int(compat) if compat is not None else None
        except (TypeError, ValueError):
            compat = None
        profile = DolbyVisionProfile.from_config_record(record.get("dv_profile"), compat)
        has_rpu = _flag(record, "rpu_present_flag", True)
        has_el = _flag(record, "el_present_flag", profile.is_dual_layer)
        return FormatSignal(
            format=HdrFormat.DOLBY_VISION,
            detected=True,
            confidence=CONFIDENCE_DOVI_RECORD if has_rpu else CONFIDENCE_DOVI_NO_RPU,
            profile=profile,
            details={
                "has_rpu": has_rpu,
                "has_enhancement_layer": has_el,
                "bl_compatibility_id": compat,
                "source": "config_record",
            }
        )

    tag = (metadata.codec_tag or "").lower()
    codec_profile = (metadata.codec_profile or "").lower()
    if tag in DV_CODEC_TAGS:
        profile = DolbyVisionProfile.from_string(codec_profile)
        if profile is DolbyVisionProfile.NONE:
            profile = DolbyVisionProfile.PROFILE_8_1
        return FormatSignal(
            format=HdrFormat.DOLBY_VISION, detected=True,
            confidence=CONFIDENCE_DV_CODEC_TAG, profile=profile,
            details={"has_rpu": True, "has_enhancement_layer": profile.is_dual_layer,
                     "source": "codec_tag"}
        )

    if "dolby vision" in codec_profile or "dvhe" in codec_profile:
        profile = DolbyVisionProfile.from_string(codec_profile)
        if profile is DolbyVisionProfile.NONE:
            profile = DolbyVisionProfile.PROFILE_8_1
        return FormatSignal(
            format=HdrFormat.DOLBY_VISION, detected=True,
            confidence=CONFIDENCE_DV_PROFILE_STRING, profile=profile,
            details={"has_rpu": True, "has_enhancement_layer": profile.is_dual_layer,
                     "source": "codec_profile"}
        )

    return FormatSignal.absent(HdrFormat.DOLBY_VISION)


def detect_hdr10_plus(metadata: VideoMetadata,
                      side_data: Optional[SideDataInfo] = None) -> FormatSignal:
    """Detect HDR10+ from SMPTE 2094-40 dynamic metadata side data."""
    if side_data is not None and side_data.has_dynamic_metadata:
        return FormatSignal(
            format=HdrFormat.HDR10_PLUS, detected=True,
            confidence=CONFIDENCE_DYNAMIC_METADATA
        )
    for entry in metadata.side_data_list:
        if is_hdr10_plus_side_data(str(entry.get("side_data_type", ""))):
            return FormatSignal(
                format=HdrFormat.HDR10_PLUS, detected=True,
                confidence=CONFIDENCE_FULL_MATCH
            )
    return FormatSignal.absent(HdrFormat.HDR10_PLUS)


def is_plausibly_advanced(metadata: VideoMetadata,
                          patterns: Optional[DetectionPatterns] = None) -> bool:
    """Cheap check for any non-SDR indicator in stream tags.

    Returns False for plain SDR so the side data pass can be skipped.
    """
    patterns = patterns or DetectionPatterns()
    if (_matches(metadata.color_transfer, patterns.transfer) or
            _matches(metadata.color_transfer, patterns.hlg) or
            _is_bt2020(metadata, patterns)):
        return True
    if (metadata.codec_tag or "").lower() in DV_CODEC_TAGS:
        return True
    if "dolby vision" in (metadata.codec_profile or "").lower():
        return True
    if metadata.mastering_display or metadata.max_cll:
        return True
    return any(
        "dovi" in str(entry.get("side_data_type", "")).lower() or
        is_hdr10_plus_side_data(str(entry.get("side_data_type", "")))
        for entry in metadata.side_data_list
    )


def detect_formats(metadata: VideoMetadata,
                   side_data: Optional[SideDataInfo] = None,
                   patterns: Optional[DetectionPatterns] = None) -> Dict[HdrFormat, FormatSignal]:
    """Run every detector and return their signals keyed by format."""
    patterns = patterns or DetectionPatterns()
    return {
        HdrFormat.HDR10: detect_hdr10(metadata, side_data, patterns),
        HdrFormat.HLG: detect_hlg(metadata, patterns),
        HdrFormat.DOLBY_VISION: detect_dolby_vision(metadata, side_data),
        HdrFormat.HDR10_PLUS: detect_hdr10_plus(metadata, side_data),
    }


class FormatDetector:
    """Orchestrates the cheap and expensive detection passes."""

    def __init__(self, probe, patterns: Optional[DetectionPatterns] = None):
        """Initialize detector.

        Args:
            probe: ``ProbeAdapter`` used for both passes
            patterns: Identifier patterns
        """
        self._probe = probe
        self._patterns = patterns or DetectionPatterns()
        self._logger = get_logger(__name__)

    async def analyze(self, input_path: Path) -> DetectionResult:
        """Probe a file and detect its dynamic range formats.

        Raises:
            ProbeError: If the cheap pass cannot produce metadata
        """
        metadata = await self._probe.probe(input_path)
        return await self.analyze_metadata(metadata, input_path)

    async def analyze_metadata(self, metadata: VideoMetadata,
                               input_path: Optional[Path] = None) -> DetectionResult:
        """Detect formats for already probed metadata."""
        if not is_plausibly_advanced(metadata, self._patterns):
            self._logger.debug("No HDR indicators, skipping side data pass")
            return DetectionResult(
                metadata=metadata,
                signals=detect_formats(metadata, None, self._patterns)
            )

        side_data = await self._probe.probe_side_data(input_path or metadata.input_path)
        signals = detect_formats(metadata, side_data, self._patterns)
        detected = [s.format.label for s in signals.values() if s.detected]
        self._logger.info("Detected formats: %s", ", ".join(detected) or "none")
        return DetectionResult(metadata=metadata, signals=signals, side_data=side_data)
