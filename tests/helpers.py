"""Shared test builders."""
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

from hdrflow.core.video.types import VideoMetadata
from hdrflow.metadata.tools import ToolResult, ToolRunner


def make_metadata(**overrides) -> VideoMetadata:
    """Build ``VideoMetadata`` with UHD defaults."""
    values: Dict[str, Any] = dict(
        width=3840,
        height=2160,
        duration=100.0,
        frame_rate=24.0,
        frame_count=2400,
        codec="hevc",
        bit_depth=10,
    )
    values.update(overrides)
    return VideoMetadata(**values)


def tool_result(stdout: str = "", stderr: str = "", returncode: int = 0) -> ToolResult:
    return ToolResult(returncode=returncode, stdout=stdout, stderr=stderr)


def mock_runner(results: Optional[List[Any]] = None) -> Mock:
    """ToolRunner double whose ``run`` returns or raises the given items in order."""
    runner = Mock(spec=ToolRunner)
    runner.timeout = 300.0
    if results is None:
        runner.run = AsyncMock(return_value=tool_result())
    else:
        runner.run = AsyncMock(side_effect=results)
    return runner


def probe_json(**stream_overrides) -> Dict[str, Any]:
    """ffprobe ``-show_format -show_streams`` output for one video stream."""
    stream: Dict[str, Any] = {
        "index": 0,
        "codec_name": "hevc",
        "codec_type": "video",
        "profile": "Main 10",
        "codec_tag_string": "hev1",
        "width": 3840,
        "height": 2160,
        "pix_fmt": "yuv420p10le",
        "avg_frame_rate": "24000/1001",
        "r_frame_rate": "24000/1001",
        "duration": "100.100000",
        "nb_frames": "2400",
    }
    stream.update(stream_overrides)
    return {
        "streams": [stream],
        "format": {"duration": "100.100000", "bit_rate": "20000000"},
    }


def write_bytes(path: Path, size: int = 64) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\0" * size)
    return path
