"""Common test fixtures and utilities."""
import pytest

from hdrflow.config import DolbyVisionConfig, WorkflowConfig
from helpers import make_metadata


@pytest.fixture
def temp_dir(tmp_path):
    """Create a temporary directory for tests."""
    return tmp_path


@pytest.fixture
def mock_video_file(temp_dir):
    """Create a mock video file for testing."""
    video_file = temp_dir / "test.mkv"
    video_file.write_bytes(b"mock video content")
    return video_file


@pytest.fixture
def config(temp_dir):
    """Workflow config with a test work directory and DV VBV values."""
    return WorkflowConfig(
        work_dir=temp_dir / "work",
        dolby_vision=DolbyVisionConfig(vbv_bufsize=160000, vbv_maxrate=160000)
    )


@pytest.fixture
def sdr_metadata():
    """1080p SDR metadata."""
    return make_metadata(
        width=1920, height=1080,
        color_transfer="bt709", color_primaries="bt709", color_space="bt709",
        bit_depth=8
    )


@pytest.fixture
def hdr10_metadata():
    """UHD HDR10 metadata with static metadata."""
    return make_metadata(
        color_transfer="smpte2084", color_primaries="bt2020", color_space="bt2020nc",
        mastering_display="G(13250,34500)B(7500,3000)R(34000,16000)WP(15635,16450)L(10000000,50)",
        max_cll="1000", max_fall="400"
    )
