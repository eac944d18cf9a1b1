"""Progress channel parsing and ETA estimation.

The encoder reports progress as periodic ``key=value`` blocks, each ending
with a ``progress=continue`` or ``progress=end`` line (ffmpeg ``-progress``).
The classic single-line stats format is also understood.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

# Hard bounds for a reported ETA
MAX_ETA_SECONDS = 24 * 3600.0
# Size extrapolation is too noisy before this much progress
SIZE_ESTIMATE_MIN_PERCENT = 1.0

FRAME_RE = re.compile(r"frame=\s*(\d+)")
FPS_RE = re.compile(r"fps=\s*([\d.]+)")
TIME_RE = re.compile(r"time=\s*(-?)(\d+):(\d{2}):(\d{2})(?:\.(\d+))?")
SPEED_RE = re.compile(r"speed=\s*([\d.]+)x")
SIZE_RE = re.compile(r"L?size=\s*(\d+)\s*(k|K|Ki|M|Mi)?B")
BITRATE_RE = re.compile(r"bitrate=\s*([\d.]+)\s*kbits/s")


@dataclass
class ProgressSample:
    """One parse of the progress channel.

    Attributes:
        frame: Output frame index
        out_time: Output time position in seconds
        fps: Instantaneous encode fps reported by the encoder
        speed: Speed relative to realtime
        total_size: Bytes written so far
        bitrate: Current bitrate in kbit/s
        ended: Whether the encoder reported the final block
    """
    frame: int = 0
    out_time: float = 0.0
    fps: Optional[float] = None
    speed: Optional[float] = None
    total_size: Optional[int] = None
    bitrate: Optional[float] = None
    ended: bool = False


@dataclass
class ProgressReport:
    """Derived progress view, recomputed for every sample.

    Attributes:
        percent: Percent complete (0-100)
        frame: Current frame
        total_frames: Expected total frames
        elapsed: Seconds since monitoring started
        eta_seconds: Smoothed ETA, None until it can be estimated
        fps: Current encode fps
        speed: Speed relative to realtime
        estimated_size: Extrapolated final size in bytes
        stalled: Whether the encoder is currently stalled
        sample: Sample the report was derived from
    """
    percent: float
    frame: int
    total_frames: int
    elapsed: float
    eta_seconds: Optional[float] = None
    fps: Optional[float] = None
    speed: Optional[float] = None
    estimated_size: Optional[int] = None
    stalled: bool = False
    sample: Optional[ProgressSample] = field(default=None, repr=False)


def _parse_float(value: str) -> Optional[float]:
    value = value.strip().rstrip("x")
    if not value or value.upper() == "N/A":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_clock(value: str) -> Optional[float]:
    match = re.match(r"(-?)(\d+):(\d{2}):(\d{2})(?:\.(\d+))?$", value.strip())
    if not match:
        return None
    sign, hours, minutes, seconds, fraction = match.groups()
    total = int(hours) * 3600 + int(minutes) * 60 + int(seconds)
    if fraction:
        total += float(f"0.{fraction}")
    return -total if sign else float(total)


def _last_block(text: str) -> Dict[str, str]:
    lines = text.splitlines()
    # Drop a partially written trailing line
    if lines and not text.endswith("\n"):
        lines = lines[:-1]

    end = None
    for index in range(len(lines) - 1, -1, -1):
        if lines[index].startswith("progress="):
            end = index
            break
    if end is None:
        block = lines
    else:
        start = end
        while start > 0 and not lines[start - 1].startswith("progress="):
            start -= 1
        block = lines[start:end + 1]

    values: Dict[str, str] = {}
    for line in block:
        key, sep, value = line.partition("=")
        if not sep or not key.strip():
            continue
        values[key.strip()] = value.strip()
    return values


def parse_progress_block(text: str) -> Optional[ProgressSample]:
    """Parse the most recent complete ``key=value`` block.

    Malformed lines and ``N/A`` values are skipped.

    Args:
        text: Tail of the progress channel

    Returns:
        Sample, or None if no frame or time progress is present
    """
    values = _last_block(text)
    if not values:
        return None

    sample = ProgressSample()
    frame = _parse_float(values.get("frame", ""))
    if frame is not None:
        sample.frame = int(frame)

    micros = _parse_float(values.get("out_time_us", ""))
    if micros is None:
        # ffmpeg's out_time_ms is also in microseconds
        micros = _parse_float(values.get("out_time_ms", ""))
    if micros is not None:
        sample.out_time = max(micros / 1_000_000, 0.0)
    elif "out_time" in values:
        sample.out_time = max(_parse_clock(values["out_time"]) or 0.0, 0.0)

    sample.fps = _parse_float(values.get("fps", ""))
    sample.speed = _parse_float(values.get("speed", ""))
    size = _parse_float(values.get("total_size", ""))
    sample.total_size = int(size) if size is not None else None
    bitrate = values.get("bitrate", "").replace("kbits/s", "")
    sample.bitrate = _parse_float(bitrate)
    sample.ended = values.get("progress") == "end"

    if sample.frame <= 0 and sample.out_time <= 0 and not sample.ended:
        return None
    return sample


def parse_stats_line(line: str) -> Optional[ProgressSample]:
    """Parse a classic ``frame= .. time=.. speed=..x`` stats line."""
    if "frame=" not in line or "time=" not in line:
        return None
    sample = ProgressSample()

    match = FRAME_RE.search(line)
    if match:
        sample.frame = int(match.group(1))
    match = TIME_RE.search(line)
    if match:
        sample.out_time = max(_parse_clock(match.group(0).split("=", 1)[1]) or 0.0, 0.0)
    match = FPS_RE.search(line)
    if match:
        sample.fps = _parse_float(match.group(1))
    match = SPEED_RE.search(line)
    if match:
        sample.speed = _parse_float(match.group(1))
    match = BITRATE_RE.search(line)
    if match:
        sample.bitrate = _parse_float(match.group(1))
    match = SIZE_RE.search(line)
    if match:
        unit = (match.group(2) or "").lower()
        scale = {"": 1, "k": 1024, "ki": 1024, "m": 1024 ** 2, "mi": 1024 ** 2}[unit]
        sample.total_size = int(match.group(1)) * scale

    if sample.frame <= 0 and sample.out_time <= 0:
        return None
    return sample


class EtaEstimator:
    """Blends two independent ETA estimators.

    The elapsed-time estimator uses the average rate since start and the
    speed estimator uses the encoder's instantaneous fps. Their mean is
    exponentially smoothed against the previous ETA advanced by the wall
    time since the last update, so a steady encode reports the true
    remaining time while fps jitter is damped.
    """

    def __init__(self, total_frames: int, expected_fps: Optional[float] = None,
                 smoothing: float = 0.3, clock: Callable[[], float] = time.monotonic):
        """Initialize estimator.

        Args:
            total_frames: Expected total frame count
            expected_fps: Source frame rate, used to map time to frames
            smoothing: Weight of the newest estimate (0-1]
            clock: Monotonic time source
        """
        self.total_frames = max(int(total_frames), 0)
        self.expected_fps = expected_fps
        self.smoothing = smoothing
        self._clock = clock
        self._started: Optional[float] = None
        self._last_update: Optional[float] = None
        self._eta: Optional[float] = None
        self._last_sample: Optional[ProgressSample] = None

    def start(self, now: Optional[float] = None) -> None:
        self._started = self._clock() if now is None else now

    @property
    def last_sample(self) -> Optional[ProgressSample]:
        return self._last_sample

    def _frame_of(self, sample: ProgressSample) -> int:
        if sample.frame > 0 or not self.expected_fps:
            return sample.frame
        return int(sample.out_time * self.expected_fps)

    @staticmethod
    def elapsed_estimate(elapsed: float, frame: int, total_frames: int) -> Optional[float]:
        """remaining = elapsed * (total - current) / current"""
        if frame <= 0 or elapsed <= 0:
            return None
        return elapsed * max(total_frames - frame, 0) / frame

    @staticmethod
    def speed_estimate(frame: int, total_frames: int, fps: Optional[float]) -> Optional[float]:
        """remaining = (total - current) / fps"""
        if not fps or fps <= 0:
            return None
        return max(total_frames - frame, 0) / fps

    def update(self, sample: ProgressSample, now: Optional[float] = None) -> ProgressReport:
        """Fold a sample into the estimate.

        Samples whose frame index moves backwards are ignored and the
        report reflects the last accepted sample.
        """
        now = self._clock() if now is None else now
        if self._started is None:
            self._started = now
        elapsed = max(now - self._started, 0.0)

        if (self._last_sample is not None and
                self._frame_of(sample) < self._frame_of(self._last_sample)):
            sample = self._last_sample
        else:
            self._blend(sample, elapsed, now)
            self._last_sample = sample

        return self._report(sample, elapsed)

    def _blend(self, sample: ProgressSample, elapsed: float, now: float) -> None:
        frame = self._frame_of(sample)
        if sample.ended:
            self._eta = 0.0
            self._last_update = now
            return

        fps = sample.fps if sample.fps else None
        estimates = [
            value for value in (
                self.elapsed_estimate(elapsed, frame, self.total_frames),
                self.speed_estimate(frame, self.total_frames, fps)
            ) if value is not None
        ]
        if not estimates:
            return
        instant = sum(estimates) / len(estimates)

        if self._eta is None or self._last_update is None:
            blended = instant
        else:
            predicted = max(self._eta - (now - self._last_update), 0.0)
            blended = self.smoothing * instant + (1 - self.smoothing) * predicted
        self._eta = min(max(blended, 0.0), MAX_ETA_SECONDS)
        self._last_update = now

    def _report(self, sample: ProgressSample, elapsed: float) -> ProgressReport:
        frame = self._frame_of(sample)
        percent = 0.0
        if self.total_frames > 0:
            percent = min(frame / self.total_frames * 100.0, 100.0)
        if sample.ended:
            percent = 100.0

        fps = sample.fps
        if not fps and frame > 0 and elapsed > 0:
            fps = frame / elapsed

        return ProgressReport(
            percent=percent,
            frame=frame,
            total_frames=self.total_frames,
            elapsed=elapsed,
            eta_seconds=self._eta,
            fps=fps,
            speed=sample.speed,
            estimated_size=estimate_final_size(sample.total_size, frame, self.total_frames),
            sample=sample
        )

    def current_report(self, now: Optional[float] = None) -> Optional[ProgressReport]:
        """Report for the last accepted sample without a new sample."""
        if self._last_sample is None:
            return None
        now = self._clock() if now is None else now
        elapsed = max(now - (self._started or now), 0.0)
        return self._report(self._last_sample, elapsed)


def estimate_final_size(current_size: Optional[int], frame: int,
                        total_frames: int) -> Optional[int]:
    """Extrapolate final size as current_size * total / current.

    Returns None before 1% progress or without a size.
    """
    if not current_size or frame <= 0 or total_frames <= 0:
        return None
    if frame / total_frames * 100.0 < SIZE_ESTIMATE_MIN_PERCENT:
        return None
    return int(current_size * total_frames / frame)


def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as H:MM:SS or M:SS."""
    if seconds is None:
        return "--:--"
    total = int(round(max(seconds, 0.0)))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_size(size: Optional[float]) -> str:
    """Format a byte count with a binary unit."""
    if size is None:
        return "-"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"
