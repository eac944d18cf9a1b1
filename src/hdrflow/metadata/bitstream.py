"""HEVC elementary stream demux and remux helpers."""

from pathlib import Path
from typing import Type

from ..core.errors import ToolError
from .tools import ToolRunner

HEVC_SUFFIXES = {".hevc", ".h265", ".265"}


def is_elementary_stream(path: Path) -> bool:
    return path.suffix.lower() in HEVC_SUFFIXES


async def demux_hevc(runner: ToolRunner, ffmpeg: str, source: Path, output: Path,
                     error_cls: Type[ToolError] = ToolError) -> Path:
    """Copy the first video stream out as an Annex B HEVC bitstream.

    Args:
        runner: Tool runner
        ffmpeg: ffmpeg executable
        source: Container to read
        output: Raw ``.hevc`` file to write
        error_cls: Error raised on failure

    Returns:
        The output path
    """
    cmd = [
        ffmpeg, "-hide_banner", "-loglevel", "error",
        "-i", str(source),
        "-map", "0:v:0",
        "-c:v", "copy",
        "-bsf:v", "hevc_mp4toannexb",
        "-f", "hevc",
        "-y", str(output)
    ]
    await runner.run(cmd, error_cls=error_cls)
    return output


async def remux_hevc(runner: ToolRunner, ffmpeg: str, hevc: Path, container: Path,
                     output: Path, error_cls: Type[ToolError] = ToolError) -> Path:
    """Mux a processed bitstream with the non-video streams of a container.

    Audio, subtitles, attachments, data streams, metadata and chapters
    are taken from ``container``.
    """
    cmd = [
        ffmpeg, "-hide_banner", "-loglevel", "error",
        "-f", "hevc",
        "-fflags", "+genpts",
        "-i", str(hevc),
        "-i", str(container),
        "-map", "0:v:0",
        "-map", "1:a?",
        "-map", "1:s?",
        "-map", "1:t?",
        "-map", "1:d?",
        "-c", "copy",
        "-map_metadata", "1",
        "-map_chapters", "1",
        "-y", str(output)
    ]
    await runner.run(cmd, error_cls=error_cls)
    return output


async def remux_hevc_mkvmerge(runner: ToolRunner, mkvmerge: str, hevc: Path, container: Path,
                              output: Path, fps: float,
                              error_cls: Type[ToolError] = ToolError) -> Path:
    """Same as ``remux_hevc`` using mkvmerge, which needs the frame rate."""
    cmd = [
        mkvmerge,
        "-o", str(output),
        "--default-duration", f"0:{fps:.6g}fps",
        str(hevc),
        "-D", str(container)
    ]
    # mkvmerge exits 1 for warnings with a usable output
    result = await runner.run(cmd, check=False)
    if result.returncode not in (0, 1):
        raise error_cls(
            f"mkvmerge exited with status {result.returncode}",
            cmd=cmd,
            stderr=result.stderr or result.stdout,
            returncode=result.returncode
        )
    return output
