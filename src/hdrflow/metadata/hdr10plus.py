"""HDR10+ dynamic metadata extraction and injection via hdr10plus_tool."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..config import default_config as defaults
from ..core.errors import ExtractionFailure, InjectionFailure
from .tools import ToolRunner, check_available
from ..utils.logging import get_logger

HELP_MARKER = "extract"

# hdr10plus_tool output for sources without dynamic metadata
NO_METADATA_MARKERS = (
    "File doesn't contain dynamic metadata",
    "No dynamic metadata found",
)


@dataclass
class Hdr10PlusMetadata:
    """Parsed hdr10plus_tool JSON export.

    Attributes:
        path: JSON file location
        profile: HDR10+ profile (e.g. "A" or "B")
        version: Metadata format version
        scene_info: Per-frame entries
        tool_info: Tool name and version that produced the file
    """
    path: Path
    profile: Optional[str] = None
    version: Optional[str] = None
    scene_info: List[Dict[str, Any]] = field(default_factory=list)
    tool_info: Dict[str, Any] = field(default_factory=dict)

    @property
    def frame_count(self) -> int:
        return len(self.scene_info)

    @classmethod
    def from_json_file(cls, path: Path) -> "Hdr10PlusMetadata":
        """Load and validate an exported JSON file.

        Raises:
            ExtractionFailure: If the file is missing, unparsable or has no frames
        """
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            raise ExtractionFailure(f"HDR10+ metadata file was not created: {path}")
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ExtractionFailure(f"Invalid HDR10+ metadata JSON: {path}", stderr=str(e))

        info = data.get("JSONInfo") or {}
        metadata = cls(
            path=path,
            profile=info.get("HDR10plusProfile"),
            version=info.get("Version"),
            scene_info=data.get("SceneInfo") or [],
            tool_info=data.get("ToolInfo") or {}
        )
        if metadata.frame_count == 0:
            raise ExtractionFailure(
                f"HDR10+ metadata contains no frames: {path}", no_metadata=True
            )
        return metadata


def encoder_params(metadata: Hdr10PlusMetadata) -> List[Tuple[str, str]]:
    """x265 parameters that embed the metadata during encoding."""
    return [("dhdr10-info", str(metadata.path))]


def _reports_no_metadata(text: Optional[str]) -> bool:
    return bool(text) and any(marker in text for marker in NO_METADATA_MARKERS)


class Hdr10PlusTool:
    """Wrapper for hdr10plus_tool commands."""

    def __init__(self, runner: ToolRunner, path: str = defaults.HDR10PLUS_TOOL,
                 timeout: Optional[float] = None):
        self.runner = runner
        self.path = path
        self.timeout = timeout
        self._logger = get_logger(__name__)

    async def is_available(self) -> bool:
        return await check_available(self.runner, self.path, HELP_MARKER)

    def extract_command(self, source: Path, output: Path) -> List[str]:
        return [self.path, "extract", str(source), "-o", str(output)]

    def inject_command(self, hevc: Path, metadata: Path, output: Path) -> List[str]:
        return [self.path, "inject", "-i", str(hevc), "-j", str(metadata), "-o", str(output)]

    async def extract(self, source: Path, output: Path) -> Hdr10PlusMetadata:
        """Export dynamic metadata from an HEVC bitstream to JSON.

        Args:
            source: HEVC elementary stream
            output: JSON file to write

        Returns:
            Parsed metadata

        Raises:
            ExtractionFailure: If the tool fails. ``no_metadata`` is set
                when the source simply has no HDR10+ metadata.
        """
        self._logger.info("Extracting HDR10+ metadata from %s", source.name)
        cmd = self.extract_command(source, output)
        result = await self.runner.run(cmd, timeout=self.timeout, check=False)

        if _reports_no_metadata(result.output):
            output.unlink(missing_ok=True)
            raise ExtractionFailure(
                "Source contains no HDR10+ dynamic metadata",
                cmd=cmd, stderr=result.output, returncode=result.returncode,
                no_metadata=True
            )
        if result.returncode != 0:
            output.unlink(missing_ok=True)
            raise ExtractionFailure(
                f"{self.path} exited with status {result.returncode}",
                cmd=cmd, stderr=result.stderr or result.stdout, returncode=result.returncode
            )

        try:
            metadata = Hdr10PlusMetadata.from_json_file(output)
        except ExtractionFailure:
            output.unlink(missing_ok=True)
            raise
        self._logger.info(
            "Extracted HDR10+ metadata: %d frames, profile %s",
            metadata.frame_count, metadata.profile or "unknown"
        )
        return metadata

    async def inject(self, hevc: Path, metadata: Hdr10PlusMetadata, output: Path) -> Path:
        """Inject dynamic metadata into an encoded HEVC bitstream.

        Raises:
            InjectionFailure: If the tool fails or writes nothing
        """
        await self.runner.run(
            self.inject_command(hevc, metadata.path, output),
            timeout=self.timeout,
            error_cls=InjectionFailure
        )
        if not output.exists() or output.stat().st_size == 0:
            raise InjectionFailure(f"hdr10plus_tool produced no output: {output}")
        return output
