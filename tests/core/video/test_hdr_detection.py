"""Tests for dynamic range format detection."""

import pytest
from unittest.mock import AsyncMock, Mock

from hdrflow.core.video.hdr import (
    CONFIDENCE_BT2020_ONLY,
    CONFIDENCE_DOVI_NO_RPU,
    CONFIDENCE_DOVI_RECORD,
    CONFIDENCE_FULL_MATCH,
    CONFIDENCE_PQ_ONLY,
    DetectionPatterns,
    FormatDetector,
    detect_dolby_vision,
    detect_formats,
    detect_hdr10,
    detect_hdr10_plus,
    detect_hlg,
    is_plausibly_advanced,
)
from hdrflow.core.video.types import DolbyVisionProfile, HdrFormat, SideDataInfo

from helpers import make_metadata


def dovi_side_data(profile=8, compat=1, rpu=1, el=0) -> SideDataInfo:
    return SideDataInfo(
        dovi_record={
            "side_data_type": "DOVI configuration record",
            "dv_profile": profile,
            "bl_signal_compatibility_id": compat,
            "rpu_present_flag": rpu,
            "el_present_flag": el,
        },
        side_data_types=["DOVI configuration record"],
    )


class TestHdr10Detection:
    """Test HDR10 detection from stream tags."""

    def test_full_match(self):
        """Test PQ with BT.2020 primaries."""
        metadata = make_metadata(color_transfer="smpte2084", color_primaries="bt2020")
        signal = detect_hdr10(metadata)
        assert signal.detected
        assert signal.confidence == pytest.approx(CONFIDENCE_FULL_MATCH)

    def test_static_metadata_raises_confidence(self, hdr10_metadata):
        """Test mastering display and light level add to the confidence."""
        signal = detect_hdr10(hdr10_metadata)
        assert signal.confidence > CONFIDENCE_FULL_MATCH
        assert signal.confidence <= 1.0
        assert signal.details["mastering_display"]
        assert signal.details["content_light_level"]

    def test_pq_without_bt2020(self):
        """Test PQ alone is detected with lower confidence."""
        metadata = make_metadata(color_transfer="smpte2084", color_primaries="bt709")
        signal = detect_hdr10(metadata)
        assert signal.detected
        assert signal.confidence == pytest.approx(CONFIDENCE_PQ_ONLY)

    def test_bt2020_with_missing_transfer(self):
        """Test BT.2020 without a transfer is HDR10 with low confidence, not SDR."""
        metadata = make_metadata(color_primaries="bt2020", color_space="bt2020nc")
        signal = detect_hdr10(metadata)
        assert signal.detected
        assert signal.confidence == pytest.approx(CONFIDENCE_BT2020_ONLY)
        assert signal.details["transfer_missing"]

    def test_bt2020_with_sdr_transfer(self):
        """Test BT.2020 with an SDR transfer is not HDR10."""
        metadata = make_metadata(color_transfer="bt709", color_primaries="bt2020")
        assert not detect_hdr10(metadata).detected

    def test_sdr(self, sdr_metadata):
        """Test plain SDR is not detected."""
        signal = detect_hdr10(sdr_metadata)
        assert not signal.detected
        assert signal.confidence == 0.0

    def test_patterns_are_configurable(self):
        """Test detection uses the supplied identifier patterns."""
        metadata = make_metadata(color_transfer="st2084", color_primaries="bt2020")
        assert detect_hdr10(metadata).confidence < CONFIDENCE_FULL_MATCH
        patterns = DetectionPatterns(transfer=["st2084"])
        assert detect_hdr10(metadata, patterns=patterns).confidence == \
            pytest.approx(CONFIDENCE_FULL_MATCH)


class TestHlgDetection:
    """Test HLG detection."""

    def test_hlg(self):
        """Test HLG transfer with BT.2020."""
        metadata = make_metadata(color_transfer="arib-std-b67", color_primaries="bt2020")
        signal = detect_hlg(metadata)
        assert signal.detected
        assert signal.confidence == pytest.approx(CONFIDENCE_FULL_MATCH)
        assert not detect_hdr10(metadata).detected

    def test_not_hlg(self, hdr10_metadata):
        """Test PQ content is not HLG."""
        assert not detect_hlg(hdr10_metadata).detected


class TestDolbyVisionDetection:
    """Test Dolby Vision detection and profile extraction."""

    @pytest.mark.parametrize("profile,compat,expected", [
        (5, 0, DolbyVisionProfile.PROFILE_5),
        (7, 6, DolbyVisionProfile.PROFILE_7),
        (8, 1, DolbyVisionProfile.PROFILE_8_1),
        (8, 2, DolbyVisionProfile.PROFILE_8_2),
        (8, 4, DolbyVisionProfile.PROFILE_8_4),
    ])
    def test_config_record_profiles(self, hdr10_metadata, profile, compat, expected):
        """Test the configuration record is authoritative for the profile."""
        signal = detect_dolby_vision(hdr10_metadata, dovi_side_data(profile, compat))
        assert signal.detected
        assert signal.profile is expected
        assert signal.confidence == pytest.approx(CONFIDENCE_DOVI_RECORD)
        assert signal.details["has_rpu"]

    def test_profile_7_enhancement_layer(self, hdr10_metadata):
        """Test the enhancement layer flag is reported."""
        signal = detect_dolby_vision(hdr10_metadata, dovi_side_data(7, 6, el=1))
        assert signal.details["has_enhancement_layer"]

    def test_record_without_rpu(self, hdr10_metadata):
        """Test a record without RPU data yields a weak signal."""
        signal = detect_dolby_vision(hdr10_metadata, dovi_side_data(rpu=0))
        assert signal.detected
        assert signal.confidence == pytest.approx(CONFIDENCE_DOVI_NO_RPU)
        assert not signal.details["has_rpu"]

    def test_codec_tag(self):
        """Test a Dolby Vision codec tag without a record."""
        metadata = make_metadata(codec_tag="dvh1", codec_profile="dvhe.05.06")
        signal = detect_dolby_vision(metadata)
        assert signal.detected
        assert signal.profile is DolbyVisionProfile.PROFILE_5
        assert signal.details["source"] == "codec_tag"

    def test_record_in_stream_side_data(self):
        """Test a record found during the cheap pass."""
        metadata = make_metadata(side_data_list=(
            {"side_data_type": "DOVI configuration record", "dv_profile": 8,
             "bl_signal_compatibility_id": 4},
        ))
        signal = detect_dolby_vision(metadata)
        assert signal.profile is DolbyVisionProfile.PROFILE_8_4

    def test_absent(self, hdr10_metadata):
        """Test HDR10 content without evidence."""
        assert not detect_dolby_vision(hdr10_metadata, SideDataInfo()).detected


class TestHdr10PlusDetection:
    """Test HDR10+ detection."""

    def test_dynamic_metadata(self, hdr10_metadata):
        """Test dynamic metadata seen in side data."""
        signal = detect_hdr10_plus(hdr10_metadata, SideDataInfo(has_dynamic_metadata=True))
        assert signal.detected
        assert signal.confidence > CONFIDENCE_FULL_MATCH

    def test_absent(self, hdr10_metadata):
        """Test no dynamic metadata."""
        assert not detect_hdr10_plus(hdr10_metadata, SideDataInfo()).detected
        assert not detect_hdr10_plus(hdr10_metadata).detected


class TestDetectFormats:
    """Test combined detection."""

    def test_signals_for_every_format(self, hdr10_metadata):
        """Test every non-SDR format has a signal."""
        signals = detect_formats(hdr10_metadata)
        assert set(signals) == {
            HdrFormat.HDR10, HdrFormat.HLG, HdrFormat.DOLBY_VISION, HdrFormat.HDR10_PLUS
        }
        assert signals[HdrFormat.HDR10].detected

    def test_plausibly_advanced(self, sdr_metadata, hdr10_metadata):
        """Test the cheap gate for the side data pass."""
        assert not is_plausibly_advanced(sdr_metadata)
        assert is_plausibly_advanced(hdr10_metadata)
        assert is_plausibly_advanced(make_metadata(codec_tag="dvhe"))


class TestFormatDetector:
    """Test the two pass detector."""

    @pytest.fixture
    def probe(self):
        probe = Mock()
        probe.probe = AsyncMock()
        probe.probe_side_data = AsyncMock()
        return probe

    @pytest.mark.asyncio
    async def test_sdr_skips_side_data_pass(self, probe, sdr_metadata, mock_video_file):
        """Test SDR content never triggers the expensive pass."""
        probe.probe.return_value = sdr_metadata
        result = await FormatDetector(probe).analyze(mock_video_file)

        probe.probe_side_data.assert_not_called()
        assert not result.side_data_probed
        assert not any(signal.detected for signal in result.signals.values())

    @pytest.mark.asyncio
    async def test_hdr_runs_side_data_pass(self, probe, hdr10_metadata, mock_video_file):
        """Test HDR content is confirmed through the side data pass."""
        probe.probe.return_value = hdr10_metadata
        probe.probe_side_data.return_value = dovi_side_data(8, 1)
        result = await FormatDetector(probe).analyze(mock_video_file)

        probe.probe_side_data.assert_awaited_once_with(mock_video_file)
        assert result.side_data_probed
        assert result.signals[HdrFormat.DOLBY_VISION].profile is DolbyVisionProfile.PROFILE_8_1
        assert result.signals[HdrFormat.HDR10].detected
