"""Tests for workflow configuration."""

import logging

import pytest
from pydantic import ValidationError

from hdrflow.config import (
    ClassificationConfig,
    DolbyVisionConfig,
    EncoderConfig,
    HdrConfig,
    WorkflowConfig,
    default_config,
)
from hdrflow.utils.logging import InterceptHandler, PACKAGE_LOGGER


def test_defaults(temp_dir):
    """Test default values."""
    config = WorkflowConfig(work_dir=temp_dir / "work")
    assert config.hdr.crf_adjustment == default_config.HDR_CRF_ADJUSTMENT
    assert config.hdr.transfer_patterns == default_config.TRANSFER_PATTERNS
    assert config.dolby_vision.vbv_bufsize is None
    assert config.hdr10_plus.inject_after_encode
    assert config.tools.tool_timeout == default_config.TOOL_TIMEOUT
    assert config.progress.stall_threshold == default_config.STALL_THRESHOLD


def test_work_dir_created(temp_dir):
    """Test the work directory is created on load."""
    work_dir = temp_dir / "nested" / "work"
    WorkflowConfig(work_dir=work_dir)
    assert work_dir.is_dir()


def test_vbv_must_be_paired():
    """Test VBV values are set together or not at all."""
    with pytest.raises(ValidationError):
        DolbyVisionConfig(vbv_bufsize=160000)
    config = DolbyVisionConfig(vbv_bufsize=160000, vbv_maxrate=160000)
    assert config.vbv_maxrate == 160000


@pytest.mark.parametrize("data", [
    {"vbv_bufsize": 0, "vbv_maxrate": 0},
    {"vbv_bufsize": -1, "vbv_maxrate": 1},
])
def test_vbv_must_be_positive(data):
    with pytest.raises(ValidationError):
        DolbyVisionConfig(**data)


def test_hdr_validation():
    with pytest.raises(ValidationError):
        HdrConfig(bitrate_multiplier=0.5)
    with pytest.raises(ValidationError):
        HdrConfig(detection_threshold=1.5)


def test_classification_threshold_order():
    with pytest.raises(ValidationError):
        ClassificationConfig(light_grain_bpp=0.05, heavy_grain_bpp=0.01)


@pytest.mark.parametrize("width,expected", [
    (1280, default_config.CRF_SD),
    (1920, default_config.CRF_HD),
    (3840, default_config.CRF_UHD),
])
def test_base_crf(width, expected):
    assert EncoderConfig().get_crf(width) == expected


def test_setup_logging_intercepts_library_loggers(temp_dir):
    """Test library loggers are routed into loguru."""
    config = WorkflowConfig(work_dir=temp_dir / "work", log_level="DEBUG",
                            log_file=temp_dir / "hdrflow.log")
    config.setup_logging()

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    assert isinstance(package_logger.handlers[0], InterceptHandler)
    assert package_logger.level == logging.DEBUG
    assert not package_logger.propagate
