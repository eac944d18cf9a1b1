"""Probe adapter normalizing ffprobe output into video metadata."""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ProbeError, ToolError, ToolTimeout, ToolUnavailable
from .types import VideoMetadata, SideDataInfo, MasteringDisplay, ContentLightLevel
from ...utils.logging import get_logger

MASTER_DISPLAY_RE = re.compile(
    r"G\((\d+),(\d+)\)B\((\d+),(\d+)\)R\((\d+),(\d+)\)WP\((\d+),(\d+)\)L\((\d+),(\d+)\)"
)

HDR10_PLUS_MARKERS = ("smpte2094-40", "smpte 2094-40", "hdr10+", "hdr10plus")
DOVI_MARKERS = ("dovi configuration record", "dolby vision configuration")

# Frames read during the side data pass
SIDE_DATA_FRAMES = 3


def parse_frame_rate(rate_str: Optional[str]) -> float:
    """Parse a frame rate string.

    Args:
        rate_str: Frame rate as 'num/den' or a decimal

    Returns:
        Frame rate as float, 0.0 if unparsable
    """
    if not rate_str:
        return 0.0
    try:
        if "/" in rate_str:
            num, den = rate_str.split("/", 1)
            den_value = float(den)
            return float(num) / den_value if den_value else 0.0
        return float(rate_str)
    except ValueError:
        return 0.0


def bit_depth_from_stream(stream: Dict[str, Any]) -> int:
    """Get bit depth from raw sample bits or the pixel format."""
    raw = stream.get("bits_per_raw_sample")
    if raw:
        try:
            return int(raw)
        except (TypeError, ValueError):
            pass
    pixel_format = stream.get("pix_fmt") or ""
    if "p10" in pixel_format:
        return 10
    if "p12" in pixel_format:
        return 12
    return 8


def _rational(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value)
    if "/" in text:
        num, den = text.split("/", 1)
        try:
            den_value = float(den)
            return float(num) / den_value if den_value else None
        except ValueError:
            return None
    try:
        return float(text)
    except ValueError:
        return None


def parse_mastering_display(entry: Dict[str, Any]) -> Optional[MasteringDisplay]:
    """Build a mastering display record from a side data entry.

    ffprobe reports chromaticity as rationals (e.g. "34000/50000") and
    luminance as rationals in cd/m2. Values are converted to the integer
    units used by encoder parameters.
    """
    keys = ("green_x", "green_y", "blue_x", "blue_y", "red_x", "red_y",
            "white_point_x", "white_point_y", "max_luminance", "min_luminance")
    values = [_rational(entry.get(key)) for key in keys]
    if any(value is None for value in values):
        return None

    def chroma(v: float) -> int:
        return int(round(v * 50000))

    def lum(v: float) -> int:
        return int(round(v * 10000))

    return MasteringDisplay(
        green=(chroma(values[0]), chroma(values[1])),
        blue=(chroma(values[2]), chroma(values[3])),
        red=(chroma(values[4]), chroma(values[5])),
        white_point=(chroma(values[6]), chroma(values[7])),
        max_luminance=lum(values[8]),
        min_luminance=lum(values[9])
    )


def parse_master_display_string(value: Optional[str]) -> Optional[MasteringDisplay]:
    """Parse a ``G(x,y)B(x,y)R(x,y)WP(x,y)L(max,min)`` string."""
    if not value:
        return None
    match = MASTER_DISPLAY_RE.search(value.replace(" ", ""))
    if not match:
        return None
    n = [int(g) for g in match.groups()]
    return MasteringDisplay(
        green=(n[0], n[1]), blue=(n[2], n[3]), red=(n[4], n[5]),
        white_point=(n[6], n[7]), max_luminance=n[8], min_luminance=n[9]
    )


def parse_light_level(value: Optional[str]) -> Optional[ContentLightLevel]:
    """Parse a ``"max_cll,max_fall"`` string."""
    if not value:
        return None
    parts = [p.strip() for p in str(value).split(",")]
    if len(parts) != 2:
        return None
    try:
        return ContentLightLevel(max_cll=int(parts[0]), max_fall=int(parts[1]))
    except ValueError:
        return None


def _side_data_lists(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    entries: List[Dict[str, Any]] = []
    for stream in data.get("streams") or []:
        entries.extend(stream.get("side_data_list") or [])
    for frame in data.get("frames") or []:
        entries.extend(frame.get("side_data_list") or [])
    return entries


def _light_level_from_entries(entries: List[Dict[str, Any]]) -> Tuple[Optional[str], Optional[str]]:
    for entry in entries:
        if "max_content" in entry or "max_average" in entry:
            return (
                str(entry["max_content"]) if "max_content" in entry else None,
                str(entry["max_average"]) if "max_average" in entry else None
            )
    return None, None


def is_hdr10_plus_side_data(side_type: str) -> bool:
    """Check whether a side data type name denotes HDR10+ dynamic metadata."""
    text = side_type.lower()
    if any(marker in text for marker in HDR10_PLUS_MARKERS):
        return True
    return "dynamic" in text and "metadata" in text and "2094" in text


def parse_probe_output(data: Dict[str, Any], input_path: Optional[Path] = None) -> VideoMetadata:
    """Normalize decoded ffprobe JSON into ``VideoMetadata``.

    Args:
        data: Decoded ``-show_format -show_streams`` output
        input_path: Path the data was probed from

    Returns:
        Normalized metadata

    Raises:
        ProbeError: If required fields are missing or invalid
    """
    streams = data.get("streams") or []
    video = next((s for s in streams if s.get("codec_type", "video") == "video"), None)
    if video is None:
        raise ProbeError("No video stream found", str(input_path) if input_path else None)

    width = video.get("width") or 0
    height = video.get("height") or 0
    if width <= 0 or height <= 0:
        raise ProbeError(f"Invalid video dimensions: {width}x{height}")

    fmt = data.get("format") or {}
    raw_duration = video.get("duration") or fmt.get("duration")
    try:
        duration = float(raw_duration)
    except (TypeError, ValueError):
        raise ProbeError(f"Invalid or missing duration: {raw_duration!r}")
    if duration <= 0:
        raise ProbeError(f"Invalid duration: {duration}")

    frame_rate = parse_frame_rate(video.get("avg_frame_rate"))
    if frame_rate <= 0:
        frame_rate = parse_frame_rate(video.get("r_frame_rate"))

    try:
        frame_count = int(video.get("nb_frames") or 0)
    except (TypeError, ValueError):
        frame_count = 0
    if frame_count <= 0:
        frame_count = int(round(duration * frame_rate))

    bitrate = video.get("bit_rate") or fmt.get("bit_rate")
    try:
        bitrate = int(bitrate) if bitrate else None
    except (TypeError, ValueError):
        bitrate = None

    side_data = video.get("side_data_list") or []
    mastering = None
    for entry in side_data:
        record = parse_mastering_display(entry)
        if record:
            mastering = record.to_param()
            break
    max_cll, max_fall = _light_level_from_entries(side_data)

    return VideoMetadata(
        width=int(width),
        height=int(height),
        duration=duration,
        frame_rate=frame_rate,
        frame_count=frame_count,
        codec=video.get("codec_name") or "",
        bit_depth=bit_depth_from_stream(video),
        codec_tag=video.get("codec_tag_string"),
        codec_profile=video.get("profile"),
        bitrate=bitrate,
        color_space=video.get("color_space"),
        color_transfer=video.get("color_transfer"),
        color_primaries=video.get("color_primaries"),
        mastering_display=mastering,
        max_cll=max_cll,
        max_fall=max_fall,
        side_data_list=tuple(side_data),
        input_path=input_path
    )


def parse_side_data(data: Dict[str, Any]) -> SideDataInfo:
    """Collect Dolby Vision and HDR10+ evidence from side data.

    Args:
        data: Decoded output of the side data pass (streams and frames)

    Returns:
        Side data summary
    """
    info = SideDataInfo()
    for entry in _side_data_lists(data):
        side_type = str(entry.get("side_data_type", ""))
        info.side_data_types.append(side_type)
        lowered = side_type.lower()

        if info.dovi_record is None and (
            any(marker in lowered for marker in DOVI_MARKERS) or "dv_profile" in entry
        ):
            info.dovi_record = dict(entry)
        elif is_hdr10_plus_side_data(side_type):
            info.has_dynamic_metadata = True
        elif info.mastering_display is None and "mastering display" in lowered:
            info.mastering_display = parse_mastering_display(entry)
        elif info.content_light_level is None and "light level" in lowered:
            max_cll, max_fall = _light_level_from_entries([entry])
            info.content_light_level = parse_light_level(f"{max_cll},{max_fall}")
    return info


class ProbeAdapter:
    """Runs ffprobe and normalizes its output."""

    def __init__(self, runner, ffprobe: str = "ffprobe"):
        """Initialize adapter.

        Args:
            runner: ``ToolRunner`` used to invoke ffprobe
            ffprobe: ffprobe executable
        """
        self._runner = runner
        self._ffprobe = ffprobe
        self._logger = get_logger(__name__)

    async def probe(self, input_path: Path) -> VideoMetadata:
        """Cheap first pass over streams and format.

        Raises:
            ProbeError: If the file cannot be probed or parsed
        """
        if not input_path.exists():
            raise ProbeError(f"Input file does not exist: {input_path}")
        cmd = [
            self._ffprobe,
            "-v", "error",
            "-analyzeduration", "5M",
            "-probesize", "5M",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            "-select_streams", "v:0",
            str(input_path)
        ]
        data = await self._run_json(cmd)
        return parse_probe_output(data, input_path)

    async def probe_side_data(self, input_path: Path) -> SideDataInfo:
        """Expensive second pass reading stream and frame side data.

        Raises:
            ProbeError: If ffprobe fails or its output cannot be parsed
        """
        cmd = [
            self._ffprobe,
            "-v", "error",
            "-select_streams", "v:0",
            "-print_format", "json",
            "-show_entries",
            "stream=codec_name,codec_tag_string,profile:stream_side_data"
            ":frame=side_data_list",
            "-show_frames",
            "-read_intervals", f"%+#{SIDE_DATA_FRAMES}",
            str(input_path)
        ]
        data = await self._run_json(cmd)
        info = parse_side_data(data)
        self._logger.debug(
            "Side data for %s: %s", input_path.name, ", ".join(info.side_data_types) or "none"
        )
        return info

    async def _run_json(self, cmd: List[str]) -> Dict[str, Any]:
        try:
            result = await self._runner.run(cmd)
        except ToolTimeout:
            raise
        except ToolUnavailable as e:
            raise ProbeError("ffprobe not available", e.details) from e
        except ToolError as e:
            raise ProbeError("ffprobe analysis failed", e.details) from e
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ProbeError(f"Failed to parse ffprobe output: {e}")
