"""Live monitoring of a running encoder process."""

import asyncio
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional, Sequence

import psutil
from tqdm import tqdm

from ..config import ProgressConfig
from ..core.errors import EncodeProcessFailure, StallTimeout
from .progress import (
    EtaEstimator, ProgressReport, ProgressSample,
    format_duration, format_size, parse_progress_block, parse_stats_line
)
from ..utils.logging import get_logger

# Bytes read from the end of a progress file on each poll
TAIL_BYTES = 4096
TERMINATE_GRACE = 5.0


@dataclass
class StallNotification:
    """Emitted once when frame progress stops while the process is alive.

    Attributes:
        stalled_for: Seconds since the last frame advance
        last_frame: Last frame index seen
    """
    stalled_for: float
    last_frame: int


class FileProgressSource:
    """Reads the trailing ``key=value`` block of a progress file."""

    def __init__(self, path: Path):
        self.path = path
        self._handle = None

    async def poll(self) -> Optional[ProgressSample]:
        if self._handle is None:
            if not self.path.exists():
                return None
            self._handle = open(self.path, "rb")
        size = os.fstat(self._handle.fileno()).st_size
        self._handle.seek(max(size - TAIL_BYTES, 0))
        text = self._handle.read().decode("utf-8", errors="replace")
        return parse_progress_block(text)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None


class StreamProgressSource:
    """Collects progress from a pipe in the background.

    Accepts ``key=value`` blocks and classic stats lines, which ffmpeg
    terminates with carriage returns.
    """

    def __init__(self, stream: Optional[asyncio.StreamReader]):
        if stream is None:
            raise ValueError("Encoder stdout must be a pipe when no progress file is given")
        self.stream = stream
        self._lines: List[str] = []
        self._latest: Optional[ProgressSample] = None
        self._task = asyncio.ensure_future(self._read())

    async def _read(self) -> None:
        buffer = b""
        while True:
            chunk = await self.stream.read(1024)
            if not chunk:
                break
            buffer += chunk
            *lines, buffer = buffer.replace(b"\r", b"\n").split(b"\n")
            for raw in lines:
                self._feed(raw.decode("utf-8", errors="replace").strip())

    def _feed(self, line: str) -> None:
        if not line:
            return
        stats = parse_stats_line(line)
        if stats is not None:
            self._latest = stats
            return
        self._lines.append(line)
        if line.startswith("progress="):
            sample = parse_progress_block("\n".join(self._lines) + "\n")
            if sample is not None:
                self._latest = sample
            self._lines = []

    async def poll(self) -> Optional[ProgressSample]:
        return self._latest

    def close(self) -> None:
        if not self._task.done():
            self._task.cancel()


class ProgressMonitor:
    """Turns the encoder's progress channel into progress reports.

    Reports are produced by iterating ``attach``. A stall is reported
    exactly once per stall episode through ``on_stall`` and the episode
    ends when frames advance again. Cancellation is cooperative: after
    ``cancel`` the iterator terminates the encoder's process tree and
    stops at the next poll.
    """

    def __init__(self, config: Optional[ProgressConfig] = None,
                 on_stall: Optional[Callable[[StallNotification], None]] = None,
                 stall_timeout: Optional[float] = None,
                 show_progress_bar: Optional[bool] = None,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize monitor.

        Args:
            config: Progress settings
            on_stall: Callback for the single stall notification
            stall_timeout: Abort with ``StallTimeout`` after this many
                seconds without progress, never if None
            show_progress_bar: Override ``config.show_progress_bar``
            clock: Monotonic time source
        """
        self.config = config or ProgressConfig()
        self.on_stall = on_stall
        self.stall_timeout = stall_timeout
        self.show_progress_bar = (
            self.config.show_progress_bar if show_progress_bar is None else show_progress_bar
        )
        self._clock = clock
        self._cancelled = False
        self._process = None
        self._logger = get_logger(__name__)
        self.stall_notifications = 0
        self.last_report: Optional[ProgressReport] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Request cancellation; the running ``attach`` loop stops at its next poll."""
        self._cancelled = True

    async def attach(self, process: asyncio.subprocess.Process, total_frames: int,
                     fps: Optional[float] = None,
                     progress_path: Optional[Path] = None) -> AsyncIterator[ProgressReport]:
        """Monitor a running encoder.

        Args:
            process: Encoder process
            total_frames: Expected output frame count
            fps: Source frame rate, used when only time progress is reported
            progress_path: Progress file, read from ``process.stdout`` if None

        Yields:
            A report for each new sample and when a stall begins

        Raises:
            StallTimeout: If ``stall_timeout`` is set and exceeded
        """
        self._process = process
        self.stall_notifications = 0
        self.last_report = None
        if progress_path is not None:
            source = FileProgressSource(progress_path)
        else:
            source = StreamProgressSource(process.stdout)

        estimator = EtaEstimator(total_frames, expected_fps=fps,
                                 smoothing=self.config.eta_smoothing, clock=self._clock)
        estimator.start()
        bar = tqdm(total=total_frames, unit="frame", dynamic_ncols=True,
                   disable=not self.show_progress_bar)
        last_frame = -1
        last_advance = self._clock()
        stalled = False

        try:
            while True:
                if self._cancelled:
                    await self.terminate()
                    self._logger.info("Encode cancelled at frame %d", max(last_frame, 0))
                    break

                exited = process.returncode is not None
                sample = await source.poll()
                now = self._clock()

                if sample is not None and estimator.last_sample is not sample:
                    report = estimator.update(sample, now)
                    # The final block is reported even without a frame advance
                    if report.frame > last_frame or sample.ended:
                        if stalled:
                            self._logger.info("Encoder resumed at frame %d", report.frame)
                        bar.update(report.frame - max(last_frame, 0))
                        bar.set_postfix(
                            eta=format_duration(report.eta_seconds),
                            size=format_size(report.estimated_size),
                            refresh=False
                        )
                        last_frame = report.frame
                        last_advance = now
                        stalled = False
                        self.last_report = report
                        yield report

                idle = now - last_advance
                if not exited and not stalled and idle >= self.config.stall_threshold:
                    stalled = True
                    self._notify_stall(idle, max(last_frame, 0))
                    report = estimator.current_report(now) or ProgressReport(
                        percent=0.0, frame=0, total_frames=total_frames, elapsed=idle
                    )
                    report.stalled = True
                    self.last_report = report
                    yield report
                if (not exited and self.stall_timeout is not None and
                        idle >= self.stall_timeout):
                    await self.terminate()
                    raise StallTimeout(
                        f"Encoder made no progress for {idle:.0f}s",
                        stalled_for=idle, last_frame=max(last_frame, 0)
                    )

                if exited or (sample is not None and sample.ended):
                    break
                await asyncio.sleep(self.config.poll_interval)
        finally:
            source.close()
            bar.close()

    def _notify_stall(self, idle: float, last_frame: int) -> None:
        self.stall_notifications += 1
        self._logger.warning(
            "No encoder progress for %.1fs (frame %d)", idle, last_frame
        )
        if self.on_stall is not None:
            self.on_stall(StallNotification(stalled_for=idle, last_frame=last_frame))

    async def terminate(self, grace: float = TERMINATE_GRACE) -> None:
        """Terminate the encoder and any child processes it spawned."""
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            parent = psutil.Process(process.pid)
            children = parent.children(recursive=True)
        except psutil.NoSuchProcess:
            children = []

        for child in children:
            try:
                child.terminate()
            except psutil.NoSuchProcess:
                continue
        try:
            process.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            self._logger.warning("Encoder did not exit after terminate, killing")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

        _, alive = psutil.wait_procs(children, timeout=grace)
        for child in alive:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                continue

    async def wait(self, process: Optional[asyncio.subprocess.Process] = None,
                   cmd: Optional[Sequence[str]] = None,
                   stderr: Optional[str] = None) -> int:
        """Wait for the encoder to exit, honoring ``cancel``.

        Args:
            process: Encoder process, the attached one if None
            cmd: Encoder command line, for error reporting
            stderr: Captured diagnostic output, read from the process if None

        Returns:
            Exit code, which is non-zero only after cancellation

        Raises:
            EncodeProcessFailure: If the encoder exits non-zero without cancellation
        """
        process = process or self._process
        if process is None:
            raise RuntimeError("No encoder process to wait for")
        self._process = process

        while process.returncode is None:
            if self._cancelled:
                await self.terminate()
                break
            try:
                await asyncio.wait_for(asyncio.shield(process.wait()),
                                       timeout=self.config.poll_interval)
            except asyncio.TimeoutError:
                continue

        returncode = await process.wait()
        if returncode != 0 and not self._cancelled:
            if stderr is None and process.stderr is not None:
                stderr = (await process.stderr.read()).decode("utf-8", errors="replace")
            raise EncodeProcessFailure(
                f"Encoder exited with status {returncode}",
                cmd=cmd, stderr=stderr, returncode=returncode
            )
        return returncode
