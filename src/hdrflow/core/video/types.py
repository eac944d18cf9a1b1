"""Common video metadata types."""

from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple


class HdrFormat(Enum):
    """Dynamic range technologies recognized by the detector."""
    SDR = auto()
    HDR10 = auto()
    HDR10_PLUS = auto()
    HLG = auto()
    DOLBY_VISION = auto()

    @property
    def label(self) -> str:
        return {
            HdrFormat.SDR: "SDR",
            HdrFormat.HDR10: "HDR10",
            HdrFormat.HDR10_PLUS: "HDR10+",
            HdrFormat.HLG: "HLG",
            HdrFormat.DOLBY_VISION: "Dolby Vision",
        }[self]


class DolbyVisionProfile(Enum):
    """Dolby Vision profiles found in consumer masters."""
    NONE = "none"
    PROFILE_5 = "5"
    PROFILE_7 = "7"
    PROFILE_8_1 = "8.1"
    PROFILE_8_2 = "8.2"
    PROFILE_8_4 = "8.4"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "DolbyVisionProfile":
        """Parse a profile string.

        Accepts plain numbers ("7", "8.1") as well as codec profile strings
        such as "dvhe.05" or "dvhe.08.06". A bare profile 8 maps to 8.1.

        Args:
            value: Profile string

        Returns:
            Matching profile, NONE if unrecognized
        """
        if not value:
            return cls.NONE
        text = str(value).strip().lower()
        if text.startswith(("dvhe.", "dvh1.")):
            parts = text.split(".")
            text = parts[1].lstrip("0") if len(parts) > 1 else ""
        for profile in cls:
            if profile.value == text:
                return profile
        if text in ("8", "8.0"):
            return cls.PROFILE_8_1
        if text in ("5.0", "7.0"):
            return cls(text[0])
        return cls.NONE

    @classmethod
    def from_config_record(cls, dv_profile: Any,
                           compatibility_id: Optional[int] = None) -> "DolbyVisionProfile":
        """Map a DOVI configuration record to a profile.

        Args:
            dv_profile: Profile number (int or string) from the record
            compatibility_id: Base layer signal compatibility id

        Returns:
            Matching profile, NONE if unrecognized
        """
        try:
            number = int(dv_profile)
        except (TypeError, ValueError):
            return cls.from_string(dv_profile)

        if number == 5:
            return cls.PROFILE_5
        if number == 7:
            return cls.PROFILE_7
        if number == 8:
            return {
                2: cls.PROFILE_8_2,
                4: cls.PROFILE_8_4,
            }.get(compatibility_id, cls.PROFILE_8_1)
        return cls.NONE

    @property
    def is_dual_layer(self) -> bool:
        return self is DolbyVisionProfile.PROFILE_7

    @property
    def supports_hdr10_compatibility(self) -> bool:
        return self in (DolbyVisionProfile.PROFILE_8_1, DolbyVisionProfile.PROFILE_8_4)


@dataclass(frozen=True)
class MasteringDisplay:
    """SMPTE ST 2086 mastering display color volume.

    Chromaticity values are in units of 0.00002 and luminance values in
    units of 0.0001 cd/m2, matching encoder parameter conventions.
    """
    green: Tuple[int, int]
    blue: Tuple[int, int]
    red: Tuple[int, int]
    white_point: Tuple[int, int]
    max_luminance: int
    min_luminance: int

    def to_param(self) -> str:
        """Format as an x265 ``master-display`` value."""
        return (
            f"G({self.green[0]},{self.green[1]})"
            f"B({self.blue[0]},{self.blue[1]})"
            f"R({self.red[0]},{self.red[1]})"
            f"WP({self.white_point[0]},{self.white_point[1]})"
            f"L({self.max_luminance},{self.min_luminance})"
        )


@dataclass(frozen=True)
class ContentLightLevel:
    """Content light level information."""
    max_cll: int
    max_fall: int

    def to_param(self) -> str:
        return f"{self.max_cll},{self.max_fall}"


@dataclass(frozen=True)
class VideoMetadata:
    """Normalized metadata for the primary video stream of a file.

    Attributes:
        width: Video width in pixels
        height: Video height in pixels
        duration: Duration in seconds
        frame_rate: Frame rate in frames per second
        frame_count: Total frame count (reported or derived)
        codec: Codec name (e.g. hevc)
        bit_depth: Bits per color component
        codec_tag: Codec tag string (e.g. hvc1, dvh1)
        codec_profile: Codec profile string as reported by the probe
        bitrate: Overall bitrate in bits per second, if known
        color_space: Raw color space / matrix string
        color_transfer: Raw transfer characteristics string
        color_primaries: Raw color primaries string
        mastering_display: Raw or formatted mastering display string
        max_cll: Maximum content light level string
        max_fall: Maximum frame-average light level string
        side_data_list: Stream side data entries from the cheap pass
        input_path: Path the metadata was probed from
    """
    width: int
    height: int
    duration: float
    frame_rate: float
    frame_count: int
    codec: str = ""
    bit_depth: int = 8
    codec_tag: Optional[str] = None
    codec_profile: Optional[str] = None
    bitrate: Optional[int] = None
    color_space: Optional[str] = None
    color_transfer: Optional[str] = None
    color_primaries: Optional[str] = None
    mastering_display: Optional[str] = None
    max_cll: Optional[str] = None
    max_fall: Optional[str] = None
    side_data_list: Tuple[Dict[str, Any], ...] = ()
    input_path: Optional[Path] = None

    @property
    def is_uhd(self) -> bool:
        return self.width >= 3840 or self.height >= 2160


@dataclass
class SideDataInfo:
    """Results of the container side data pass.

    Attributes:
        dovi_record: DOVI configuration record, if present
        has_dynamic_metadata: Whether HDR10+ (SMPTE 2094-40) blocks were seen
        mastering_display: Parsed mastering display, if present
        content_light_level: Parsed content light level, if present
        side_data_types: Every side data type name seen, in order
    """
    dovi_record: Optional[Dict[str, Any]] = None
    has_dynamic_metadata: bool = False
    mastering_display: Optional[MasteringDisplay] = None
    content_light_level: Optional[ContentLightLevel] = None
    side_data_types: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class FormatSignal:
    """Output of a single format detector.

    Attributes:
        format: Format the detector looks for
        detected: Whether the format was detected at all
        confidence: Confidence score in [0, 1]
        profile: Dolby Vision profile where applicable
        details: Detector specific annotations (e.g. rpu/el flags)
    """
    format: HdrFormat
    detected: bool = False
    confidence: float = 0.0
    profile: DolbyVisionProfile = DolbyVisionProfile.NONE
    details: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def passes(self, threshold: float) -> bool:
        """Check whether this signal clears a detection threshold."""
        return self.detected and self.confidence >= threshold

    @classmethod
    def absent(cls, hdr_format: HdrFormat) -> "FormatSignal":
        return cls(format=hdr_format)
