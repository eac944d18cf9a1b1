"""Tests for progress channel parsing."""

import pytest

from hdrflow.monitoring.progress import parse_progress_block, parse_stats_line

BLOCK = (
    "frame=100\n"
    "fps=24.00\n"
    "bitrate=2000.5kbits/s\n"
    "total_size=1048576\n"
    "out_time_us=4166666\n"
    "out_time_ms=4166666\n"
    "out_time=00:00:04.166666\n"
    "speed=1.01x\n"
    "progress=continue\n"
)


class TestParseProgressBlock:
    """Test key=value block parsing."""

    def test_full_block(self):
        sample = parse_progress_block(BLOCK)
        assert sample.frame == 100
        assert sample.fps == 24.0
        assert sample.bitrate == 2000.5
        assert sample.total_size == 1048576
        assert sample.out_time == pytest.approx(4.166666)
        assert sample.speed == pytest.approx(1.01)
        assert not sample.ended

    def test_last_complete_block_wins(self):
        """Test only the most recent complete block is used."""
        text = BLOCK + BLOCK.replace("frame=100", "frame=200") + "frame=300\nfps=25\n"
        assert parse_progress_block(text).frame == 200

    def test_partial_trailing_line(self):
        """Test a half written line is ignored."""
        text = BLOCK + "frame=2"
        assert parse_progress_block(text).frame == 100

    def test_truncated_head(self):
        """Test a tail read that starts mid-line still parses."""
        text = "me=12\n" + BLOCK
        assert parse_progress_block(text).frame == 100

    def test_end_block(self):
        sample = parse_progress_block(BLOCK.replace("progress=continue", "progress=end"))
        assert sample.ended

    def test_not_available_values(self):
        """Test N/A values fall back or are left unset."""
        text = (
            "frame=10\n"
            "fps=N/A\n"
            "out_time_us=N/A\n"
            "out_time=00:00:01.500000\n"
            "speed=N/A\n"
            "total_size=N/A\n"
            "progress=continue\n"
        )
        sample = parse_progress_block(text)
        assert sample.fps is None
        assert sample.speed is None
        assert sample.total_size is None
        assert sample.out_time == pytest.approx(1.5)

    def test_out_time_ms_is_microseconds(self):
        sample = parse_progress_block("out_time_ms=2000000\nprogress=continue\n")
        assert sample.out_time == pytest.approx(2.0)

    def test_malformed_lines_skipped(self):
        text = "garbage line\n=5\nframe=abc\n" + BLOCK
        assert parse_progress_block(text).frame == 100

    def test_negative_time_clamped(self):
        sample = parse_progress_block("frame=1\nout_time_us=-5000\nprogress=continue\n")
        assert sample.out_time == 0.0

    @pytest.mark.parametrize("text", [
        "",
        "frame=0\nout_time_us=0\nprogress=continue\n",
        "nonsense",
    ])
    def test_no_progress(self, text):
        """Test text without progress yields nothing."""
        assert parse_progress_block(text) is None


class TestParseStatsLine:
    """Test classic stats line parsing."""

    def test_stats_line(self):
        line = ("frame=  240 fps= 48 q=28.0 size=    1024kB time=00:00:10.00 "
                "bitrate= 838.9kbits/s speed=2.00x")
        sample = parse_stats_line(line)
        assert sample.frame == 240
        assert sample.fps == 48.0
        assert sample.out_time == pytest.approx(10.0)
        assert sample.total_size == 1024 * 1024
        assert sample.bitrate == pytest.approx(838.9)
        assert sample.speed == 2.0

    def test_final_size_line(self):
        line = "frame= 2400 fps=50 q=-1.0 Lsize=   20MiB time=00:01:40.10 bitrate=1675.2kbits/s"
        sample = parse_stats_line(line)
        assert sample.total_size == 20 * 1024 ** 2

    @pytest.mark.parametrize("line", [
        "Stream mapping:",
        "frame=  240 fps= 48",
        "frame=    0 fps=0.0 q=0.0 size=0kB time=00:00:00.00 bitrate=N/A speed=N/A",
    ])
    def test_not_a_progress_line(self, line):
        assert parse_stats_line(line) is None
