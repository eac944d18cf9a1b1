"""Tests for the hdr10plus_tool wrapper."""

import json

import pytest

from hdrflow.core.errors import ExtractionFailure, InjectionFailure
from hdrflow.metadata.hdr10plus import Hdr10PlusMetadata, Hdr10PlusTool, encoder_params

from helpers import mock_runner, tool_result, write_bytes

EXPORT = {
    "JSONInfo": {"HDR10plusProfile": "B", "Version": "1.0"},
    "SceneInfo": [{"LuminanceParameters": {}}, {"LuminanceParameters": {}}],
    "ToolInfo": {"Tool": "hdr10plus_tool", "Version": "1.6.0"},
}


def writes_json(path, data):
    async def run(cmd, **kwargs):
        path.write_text(json.dumps(data))
        return tool_result()
    return run


class TestHdr10PlusMetadata:
    """Test JSON export parsing."""

    def test_from_json_file(self, temp_dir):
        path = temp_dir / "meta.json"
        path.write_text(json.dumps(EXPORT))
        metadata = Hdr10PlusMetadata.from_json_file(path)
        assert metadata.profile == "B"
        assert metadata.frame_count == 2
        assert metadata.tool_info["Tool"] == "hdr10plus_tool"

    def test_invalid_json(self, temp_dir):
        path = temp_dir / "meta.json"
        path.write_text("{not json")
        with pytest.raises(ExtractionFailure) as exc_info:
            Hdr10PlusMetadata.from_json_file(path)
        assert not exc_info.value.no_metadata

    def test_no_frames(self, temp_dir):
        """Test an export without frames means no metadata."""
        path = temp_dir / "meta.json"
        path.write_text(json.dumps({"JSONInfo": {}, "SceneInfo": []}))
        with pytest.raises(ExtractionFailure) as exc_info:
            Hdr10PlusMetadata.from_json_file(path)
        assert exc_info.value.no_metadata

    def test_encoder_params(self, temp_dir):
        metadata = Hdr10PlusMetadata(path=temp_dir / "meta.json")
        assert encoder_params(metadata) == [("dhdr10-info", str(temp_dir / "meta.json"))]


class TestExtract:
    """Test extraction outcomes."""

    @pytest.mark.asyncio
    async def test_extract_success(self, temp_dir):
        output = temp_dir / "meta.json"
        runner = mock_runner()
        runner.run.side_effect = writes_json(output, EXPORT)
        metadata = await Hdr10PlusTool(runner).extract(temp_dir / "in.hevc", output)
        assert metadata.frame_count == 2
        assert runner.run.call_args[0][0][1] == "extract"

    @pytest.mark.asyncio
    async def test_no_metadata_reported(self, temp_dir):
        """Test the tool's no-metadata message sets the flag."""
        runner = mock_runner([tool_result(stderr="File doesn't contain dynamic metadata",
                                          returncode=1)])
        with pytest.raises(ExtractionFailure) as exc_info:
            await Hdr10PlusTool(runner).extract(temp_dir / "in.hevc", temp_dir / "meta.json")
        assert exc_info.value.no_metadata

    @pytest.mark.asyncio
    async def test_tool_error(self, temp_dir):
        """Test other failures keep stderr and clean up."""
        output = write_bytes(temp_dir / "meta.json", 10)
        runner = mock_runner([tool_result(stderr="Invalid HEVC", returncode=2)])
        with pytest.raises(ExtractionFailure) as exc_info:
            await Hdr10PlusTool(runner).extract(temp_dir / "in.hevc", output)
        assert not exc_info.value.no_metadata
        assert exc_info.value.stderr == "Invalid HEVC"
        assert not output.exists()


class TestInject:
    """Test injection."""

    @pytest.mark.asyncio
    async def test_inject_without_output(self, temp_dir):
        metadata = Hdr10PlusMetadata(path=temp_dir / "meta.json")
        with pytest.raises(InjectionFailure):
            await Hdr10PlusTool(mock_runner()).inject(
                temp_dir / "enc.hevc", metadata, temp_dir / "out.hevc"
            )

    @pytest.mark.asyncio
    async def test_inject_command(self, temp_dir):
        output = temp_dir / "out.hevc"
        runner = mock_runner()

        async def run(cmd, **kwargs):
            write_bytes(output)
            return tool_result()
        runner.run.side_effect = run

        metadata = Hdr10PlusMetadata(path=temp_dir / "meta.json")
        await Hdr10PlusTool(runner, path="hdr10plus").inject(temp_dir / "enc.hevc", metadata, output)
        cmd = runner.run.call_args[0][0]
        assert cmd[:2] == ["hdr10plus", "inject"]
        assert str(temp_dir / "meta.json") in cmd
