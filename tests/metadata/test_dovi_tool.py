"""Tests for the dovi_tool wrapper."""

import pytest

from hdrflow.core.errors import ExtractionFailure, InjectionFailure
from hdrflow.core.video.types import DolbyVisionProfile
from hdrflow.metadata.dolby_vision import DoviTool, RpuMetadata, processing_overhead

from helpers import mock_runner, tool_result, write_bytes


def writes(path, size=128):
    """Runner side effect that creates ``path`` like the real tool would."""
    async def run(cmd, **kwargs):
        write_bytes(path, size)
        return tool_result()
    return run


class TestCommands:
    """Test command construction."""

    def test_extract_command(self, temp_dir):
        tool = DoviTool(mock_runner(), path="/opt/dovi_tool")
        cmd = tool.extract_command(temp_dir / "in.hevc", temp_dir / "rpu.bin")
        assert cmd == ["/opt/dovi_tool", "extract-rpu", str(temp_dir / "in.hevc"),
                       "-o", str(temp_dir / "rpu.bin")]

    def test_extract_command_with_mode(self, temp_dir):
        """Test the conversion mode precedes the subcommand."""
        cmd = DoviTool(mock_runner()).extract_command(temp_dir / "in.hevc", temp_dir / "rpu.bin", 2)
        assert cmd[1:4] == ["-m", "2", "extract-rpu"]

    def test_inject_command(self, temp_dir):
        cmd = DoviTool(mock_runner()).inject_command(
            temp_dir / "enc.hevc", temp_dir / "rpu.bin", temp_dir / "out.hevc"
        )
        assert cmd[1:3] == ["inject-rpu", "-i"]
        assert "--rpu-in" in cmd


class TestExtract:
    """Test RPU extraction."""

    @pytest.mark.asyncio
    async def test_extract_success(self, temp_dir):
        """Test a validated RPU file is returned."""
        rpu = temp_dir / "rpu.bin"
        runner = mock_runner()
        runner.run.side_effect = writes(rpu)
        metadata = await DoviTool(runner).extract_rpu(
            temp_dir / "in.hevc", rpu, DolbyVisionProfile.PROFILE_8_1
        )
        assert metadata.file_size == 128
        assert metadata.profile is DolbyVisionProfile.PROFILE_8_1
        assert runner.run.call_args[1]["error_cls"] is ExtractionFailure

    @pytest.mark.asyncio
    async def test_empty_rpu_is_removed(self, temp_dir):
        """Test an empty RPU file fails extraction and is cleaned up."""
        rpu = temp_dir / "rpu.bin"
        runner = mock_runner()
        runner.run.side_effect = writes(rpu, size=0)
        with pytest.raises(ExtractionFailure):
            await DoviTool(runner).extract_rpu(
                temp_dir / "in.hevc", rpu, DolbyVisionProfile.PROFILE_8_1
            )
        assert not rpu.exists()

    @pytest.mark.asyncio
    async def test_tool_failure_propagates(self, temp_dir):
        """Test the tool's diagnostic output survives."""
        runner = mock_runner([ExtractionFailure("dovi_tool failed", stderr="Invalid NAL")])
        with pytest.raises(ExtractionFailure) as exc_info:
            await DoviTool(runner).extract_rpu(
                temp_dir / "in.hevc", temp_dir / "rpu.bin", DolbyVisionProfile.PROFILE_5
            )
        assert exc_info.value.stderr == "Invalid NAL"


class TestInject:
    """Test RPU injection."""

    @pytest.mark.asyncio
    async def test_inject_success(self, temp_dir):
        output = temp_dir / "out.hevc"
        runner = mock_runner()
        runner.run.side_effect = writes(output)
        rpu = RpuMetadata(path=temp_dir / "rpu.bin", profile=DolbyVisionProfile.PROFILE_8_1)
        assert await DoviTool(runner).inject_rpu(temp_dir / "enc.hevc", rpu, output) == output

    @pytest.mark.asyncio
    async def test_inject_without_output(self, temp_dir):
        """Test a successful exit without output is still a failure."""
        rpu = RpuMetadata(path=temp_dir / "rpu.bin", profile=DolbyVisionProfile.PROFILE_8_1)
        with pytest.raises(InjectionFailure):
            await DoviTool(mock_runner()).inject_rpu(
                temp_dir / "enc.hevc", rpu, temp_dir / "out.hevc"
            )


def test_rpu_validate_missing(temp_dir):
    with pytest.raises(ExtractionFailure):
        RpuMetadata(path=temp_dir / "missing.bin", profile=DolbyVisionProfile.PROFILE_5).validate()


@pytest.mark.parametrize("profile,expected", [
    (DolbyVisionProfile.PROFILE_7, 1.8),
    (DolbyVisionProfile.PROFILE_8_1, 1.3),
    (DolbyVisionProfile.NONE, 1.0),
])
def test_processing_overhead(profile, expected):
    assert processing_overhead(profile) == expected
