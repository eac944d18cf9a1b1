"""Unit tests for cli.py."""
from unittest.mock import AsyncMock

import pytest
from click.testing import CliRunner

from hdrflow.cli import cli
from hdrflow.core.errors import ExtractionFailure, PipelineError
from hdrflow.core.video.classification import classify_content
from hdrflow.core.video.hdr import DetectionResult, detect_formats
from hdrflow.encoding.adjustments import calculate_adjustments
from hdrflow.encoding.approach import resolve_approach
from hdrflow.pipeline import ContentAnalysis, PipelineResult


@pytest.fixture
def analysis(hdr10_metadata):
    signals = detect_formats(hdr10_metadata)
    approach = resolve_approach(signals)
    return ContentAnalysis(
        detection=DetectionResult(metadata=hdr10_metadata, signals=signals),
        approach=approach,
        adjustments=calculate_adjustments(approach),
        classification=classify_content(hdr10_metadata)
    )


@pytest.fixture
def pipeline(mocker):
    mocker.patch("hdrflow.cli.WorkflowConfig.setup_logging")
    return mocker.patch("hdrflow.cli.Pipeline")


def invoke(temp_dir, *args):
    return CliRunner().invoke(cli, ["--work-dir", str(temp_dir / "work"), *args], obj={})


def test_cli_missing_input(temp_dir, pipeline):
    """Test CLI with missing input file."""
    result = invoke(temp_dir, "analyze", str(temp_dir / "nonexistent.mkv"))
    assert result.exit_code == 2
    assert "does not exist" in result.output
    pipeline.assert_not_called()


def test_analyze_output(temp_dir, mock_video_file, pipeline, analysis):
    """Test the analysis summary."""
    pipeline.return_value.analyze = AsyncMock(return_value=analysis)
    result = invoke(temp_dir, "analyze", str(mock_video_file))

    assert result.exit_code == 0, result.output
    assert "3840x2160 hevc 10-bit" in result.output
    assert "Approach:    HDR10" in result.output
    assert "CRF delta:   +2" in result.output
    assert "VBV:" not in result.output
    assert "Target:" not in result.output
    assert "Overhead:    x1" in result.output


def test_analyze_reports_target_and_overhead(temp_dir, mock_video_file, pipeline, analysis):
    """Test the target bitrate and metadata overhead lines."""
    analysis.target_bitrate = 26000
    analysis.processing_overhead = 1.3
    pipeline.return_value.analyze = AsyncMock(return_value=analysis)
    result = invoke(temp_dir, "analyze", str(mock_video_file))

    assert result.exit_code == 0, result.output
    assert "Target:      26000 kbit/s" in result.output
    assert "Overhead:    x1.3" in result.output


def test_analyze_passes_vbv_options(temp_dir, mock_video_file, pipeline, analysis):
    """Test global options reach the configuration."""
    pipeline.return_value.analyze = AsyncMock(return_value=analysis)
    result = invoke(temp_dir, "--vbv-bufsize", "160000", "--vbv-maxrate", "140000",
                    "analyze", str(mock_video_file))

    assert result.exit_code == 0, result.output
    config = pipeline.call_args[0][0]
    assert config.dolby_vision.vbv_bufsize == 160000
    assert config.dolby_vision.vbv_maxrate == 140000
    assert config.work_dir == temp_dir / "work"


def test_unpaired_vbv_option(temp_dir, mock_video_file, pipeline):
    """Test a single VBV value is rejected."""
    result = invoke(temp_dir, "--vbv-bufsize", "160000", "analyze", str(mock_video_file))
    assert result.exit_code == 1
    assert "Error:" in result.output
    pipeline.assert_not_called()


def test_encode(temp_dir, mock_video_file, pipeline, analysis):
    """Test a successful encode."""
    output_path = temp_dir / "output.mkv"
    pipeline.return_value.process_file = AsyncMock(return_value=PipelineResult(
        output_path=output_path,
        analysis=analysis,
        approach=analysis.approach,
        adjustments=analysis.adjustments
    ))

    result = invoke(temp_dir, "encode", str(mock_video_file), str(output_path), "--no-progress")

    assert result.exit_code == 0, result.output
    assert "Encoded" in result.output
    pipeline.return_value.process_file.assert_awaited_once_with(mock_video_file, output_path)
    config = pipeline.call_args[0][0]
    assert not config.progress.show_progress_bar


def test_encode_stage_failure(temp_dir, mock_video_file, pipeline):
    """Test a failed stage is reported with its name."""
    error = PipelineError("extraction", ExtractionFailure("dovi_tool failed", stderr="bad"))
    pipeline.return_value.process_file = AsyncMock(side_effect=error)

    result = invoke(temp_dir, "encode", str(mock_video_file), str(temp_dir / "out.mkv"))

    assert result.exit_code == 1
    assert "Extraction stage failed" in result.output


def test_encode_cancelled(temp_dir, mock_video_file, pipeline, analysis):
    output_path = temp_dir / "output.mkv"
    pipeline.return_value.process_file = AsyncMock(return_value=PipelineResult(
        output_path=output_path,
        analysis=analysis,
        approach=analysis.approach,
        adjustments=analysis.adjustments,
        cancelled=True
    ))

    result = invoke(temp_dir, "encode", str(mock_video_file), str(output_path))
    assert result.exit_code == 130
