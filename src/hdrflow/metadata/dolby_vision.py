"""Dolby Vision RPU extraction and injection via dovi_tool."""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..config import default_config as defaults
from ..core.errors import ExtractionFailure, InjectionFailure
from ..core.video.types import DolbyVisionProfile
from .tools import ToolRunner, check_available
from ..utils.logging import get_logger

HELP_MARKER = "extract-rpu"

PROCESSING_OVERHEAD = {
    DolbyVisionProfile.PROFILE_7: 1.8,
    DolbyVisionProfile.PROFILE_8_1: 1.3,
    DolbyVisionProfile.PROFILE_8_2: 1.3,
    DolbyVisionProfile.PROFILE_5: 1.2,
}


def processing_overhead(profile: DolbyVisionProfile) -> float:
    """Relative time cost of RPU handling for a profile."""
    return PROCESSING_OVERHEAD.get(profile, 1.0)


@dataclass
class RpuMetadata:
    """Extracted RPU side file.

    Attributes:
        path: RPU binary written by dovi_tool
        profile: Source Dolby Vision profile
        file_size: Size of the RPU file in bytes
    """
    path: Path
    profile: DolbyVisionProfile
    file_size: int = 0

    def validate(self) -> None:
        """Check the RPU file exists and is non-empty.

        Raises:
            ExtractionFailure: If the file is missing or empty
        """
        if not self.path.exists():
            raise ExtractionFailure(f"RPU file was not created: {self.path}")
        self.file_size = self.path.stat().st_size
        if self.file_size == 0:
            raise ExtractionFailure(f"RPU file is empty: {self.path}")


class DoviTool:
    """Wrapper for dovi_tool commands."""

    def __init__(self, runner: ToolRunner, path: str = defaults.DOVI_TOOL,
                 timeout: Optional[float] = None):
        self.runner = runner
        self.path = path
        self.timeout = timeout
        self._logger = get_logger(__name__)

    async def is_available(self) -> bool:
        return await check_available(self.runner, self.path, HELP_MARKER)

    def extract_command(self, source: Path, rpu: Path, mode: Optional[int] = None) -> List[str]:
        cmd = [self.path]
        if mode is not None:
            cmd.extend(["-m", str(mode)])
        return cmd + ["extract-rpu", str(source), "-o", str(rpu)]

    def inject_command(self, hevc: Path, rpu: Path, output: Path) -> List[str]:
        return [self.path, "inject-rpu", "-i", str(hevc), "--rpu-in", str(rpu), "-o", str(output)]

    async def extract_rpu(self, source: Path, rpu: Path,
                          profile: DolbyVisionProfile,
                          mode: Optional[int] = None) -> RpuMetadata:
        """Extract RPU data from an HEVC bitstream.

        Args:
            source: HEVC elementary stream
            rpu: RPU file to write
            profile: Source profile recorded on the result
            mode: dovi_tool conversion mode, 2 converts profile 7 to 8.1

        Returns:
            Validated RPU metadata

        Raises:
            ExtractionFailure: If dovi_tool fails or writes nothing
        """
        self._logger.info("Extracting Dolby Vision RPU from %s", source.name)
        try:
            await self.runner.run(
                self.extract_command(source, rpu, mode),
                timeout=self.timeout,
                error_cls=ExtractionFailure
            )
            metadata = RpuMetadata(path=rpu, profile=profile)
            metadata.validate()
        except ExtractionFailure:
            rpu.unlink(missing_ok=True)
            raise
        self._logger.info(
            "Extracted RPU for profile %s (%d bytes)", profile.value, metadata.file_size
        )
        return metadata

    async def inject_rpu(self, hevc: Path, rpu: RpuMetadata, output: Path) -> Path:
        """Inject RPU data into an encoded HEVC bitstream.

        Raises:
            InjectionFailure: If dovi_tool fails or writes nothing
        """
        await self.runner.run(
            self.inject_command(hevc, rpu.path, output),
            timeout=self.timeout,
            error_cls=InjectionFailure
        )
        if not output.exists() or output.stat().st_size == 0:
            raise InjectionFailure(f"dovi_tool produced no output: {output}")
        return output
