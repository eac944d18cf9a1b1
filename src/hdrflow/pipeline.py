"""Per-file processing pipeline.

Chains probe, format detection, approach resolution, adjustment
calculation, metadata extraction, the external encode with progress
monitoring, and metadata injection. Each stage failure is reported as a
``PipelineError`` naming the stage.
"""

import asyncio
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Deque, Dict, Iterator, List, Optional

from loguru import logger

from .config import WorkflowConfig
from .core.errors import HdrflowError, PipelineError, ToolUnavailable
from .core.video.classification import ContentClassification, classify_content
from .core.video.hdr import DetectionPatterns, DetectionResult, FormatDetector
from .core.video.probe import ProbeAdapter
from .core.video.types import FormatSignal, HdrFormat, VideoMetadata
from .encoding.adjustments import (
    AdjustmentSettings, EncodingAdjustments, calculate_adjustments, recommended_bitrate,
    recommended_crf
)
from .encoding.approach import EncodingApproach, resolve_approach
from .encoding.params import build_x265_params, format_x265_params
from .metadata.dolby_vision import processing_overhead
from .metadata.tools import ToolRunner
from .metadata.workflow import MetadataWorkflowCoordinator
from .monitoring.monitor import ProgressMonitor, StallNotification
from .monitoring.progress import ProgressReport, format_duration
from .utils.validation import validate_input_file, validate_output_path
from .work_manager import WorkDirectoryManager

STDERR_TAIL_LINES = 50


@dataclass
class ContentAnalysis:
    """Everything known about a file before encoding.

    Attributes:
        detection: Probe metadata and per-format signals
        approach: Resolved encoding approach
        adjustments: Adjustments for the approach
        classification: Informational grain classification
        target_bitrate: Source bitrate scaled by the multiplier in kbit/s,
            None when the source bitrate is unknown
        processing_overhead: Relative time cost of metadata handling
    """
    detection: DetectionResult
    approach: EncodingApproach
    adjustments: EncodingAdjustments
    classification: ContentClassification
    target_bitrate: Optional[int] = None
    processing_overhead: float = 1.0

    @property
    def metadata(self) -> VideoMetadata:
        return self.detection.metadata

    @property
    def signals(self) -> Dict[HdrFormat, FormatSignal]:
        return self.detection.signals


@dataclass
class EncodeRequest:
    """Inputs handed to the encode command builder.

    Attributes:
        input_path: Source file
        output_path: File the encoder must write
        progress_path: File the encoder must write ``-progress`` blocks to
        metadata: Source metadata
        approach: Effective approach after extraction
        adjustments: Adjustments for the effective approach
        crf: Adjusted CRF
        preset: Encoder preset
        x265_params: Derived x265 parameters
    """
    input_path: Path
    output_path: Path
    progress_path: Path
    metadata: VideoMetadata
    approach: EncodingApproach
    adjustments: EncodingAdjustments
    crf: float
    preset: str
    x265_params: Dict[str, str] = field(default_factory=dict)


@dataclass
class PipelineResult:
    """Outcome of ``process_file``."""
    output_path: Path
    analysis: ContentAnalysis
    approach: EncodingApproach
    adjustments: EncodingAdjustments
    cancelled: bool = False
    elapsed: float = 0.0


EncodeCommandBuilder = Callable[[EncodeRequest], List[str]]


def default_encode_command(request: EncodeRequest, ffmpeg: str = "ffmpeg") -> List[str]:
    """ffmpeg libx265 command for a request."""
    cmd = [
        ffmpeg, "-hide_banner", "-nostats", "-loglevel", "error", "-y",
        "-i", str(request.input_path),
        "-map", "0:v:0", "-map", "0:a?", "-map", "0:s?",
        "-c:v", "libx265",
        "-preset", request.preset,
        "-crf", f"{request.crf:g}",
    ]
    if request.approach.is_hdr:
        cmd.extend(["-pix_fmt", "yuv420p10le"])
    if request.x265_params:
        cmd.extend(["-x265-params", format_x265_params(request.x265_params)])
    cmd.extend([
        "-c:a", "copy", "-c:s", "copy",
        "-progress", str(request.progress_path),
        str(request.output_path)
    ])
    return cmd


@contextmanager
def _stage(name: str) -> Iterator[None]:
    try:
        yield
    except PipelineError:
        raise
    except (HdrflowError, OSError) as e:
        raise PipelineError(name, e) from e


async def _drain(stream: Optional[asyncio.StreamReader], lines: Deque[str]) -> None:
    if stream is None:
        return
    while True:
        line = await stream.readline()
        if not line:
            break
        lines.append(line.decode("utf-8", errors="replace").rstrip())


class Pipeline:
    """Runs the full chain for one file at a time."""

    def __init__(self, config: Optional[WorkflowConfig] = None,
                 runner: Optional[ToolRunner] = None,
                 work_manager: Optional[WorkDirectoryManager] = None,
                 on_progress: Optional[Callable[[ProgressReport], None]] = None,
                 on_stall: Optional[Callable[[StallNotification], None]] = None,
                 stall_timeout: Optional[float] = None):
        """Initialize pipeline.

        Args:
            config: Workflow configuration
            runner: Tool runner shared by every stage
            work_manager: Work directory manager
            on_progress: Called with every progress report
            on_stall: Called once per stall episode
            stall_timeout: Abort the encode after this long without progress
        """
        self.config = config or WorkflowConfig()
        self.runner = runner or ToolRunner(timeout=self.config.tools.tool_timeout)
        self.work_manager = work_manager or WorkDirectoryManager(self.config.work_dir)
        self.on_progress = on_progress
        self.on_stall = on_stall
        self.stall_timeout = stall_timeout
        self.monitor = self._new_monitor()

    def _new_monitor(self) -> ProgressMonitor:
        return ProgressMonitor(
            self.config.progress,
            on_stall=self.on_stall,
            stall_timeout=self.stall_timeout
        )

    def cancel(self) -> None:
        """Cancel the current file's encode at the next progress poll.

        Cancellation applies to the file being processed only. The next
        ``process_file`` call starts with a fresh monitor.
        """
        self.monitor.cancel()

    async def analyze(self, input_path: Path) -> ContentAnalysis:
        """Probe and analyze a file without encoding it.

        Raises:
            PipelineError: With stage ``probe`` or ``analysis``
        """
        config = self.config
        probe = ProbeAdapter(self.runner, config.tools.ffprobe)
        detector = FormatDetector(probe, DetectionPatterns.from_config(config.hdr))

        with _stage("probe"):
            input_path = validate_input_file(input_path)
            metadata = await probe.probe(input_path)

        with _stage("analysis"):
            detection = await detector.analyze_metadata(metadata, input_path)
            approach = resolve_approach(
                detection.signals,
                threshold=config.hdr.detection_threshold,
                dolby_vision_enabled=config.dolby_vision.enabled,
                hdr10_plus_enabled=config.hdr10_plus.enabled,
                preserve_profile_7=config.dolby_vision.preserve_profile_7
            )
            adjustments = calculate_adjustments(approach, AdjustmentSettings.from_config(config))

        classification = classify_content(
            metadata,
            config.classification.light_grain_bpp,
            config.classification.heavy_grain_bpp
        )
        target_bitrate = None
        if metadata.bitrate:
            target_bitrate = recommended_bitrate(adjustments, metadata.bitrate // 1000)
        overhead = 1.0
        if approach.needs_dolby_vision:
            overhead = processing_overhead(approach.dolby_vision.profile)
        logger.info(
            f"{input_path.name}: {approach.label}, CRF {adjustments.crf_adjustment:+g}, "
            f"bitrate x{adjustments.bitrate_multiplier:g}, {classification.content_type.value}, "
            f"overhead x{overhead:g}"
        )
        return ContentAnalysis(
            detection=detection,
            approach=approach,
            adjustments=adjustments,
            classification=classification,
            target_bitrate=target_bitrate,
            processing_overhead=overhead
        )

    async def process_file(self, input_path: Path, output_path: Path,
                           encode_command_builder: Optional[EncodeCommandBuilder] = None
                           ) -> PipelineResult:
        """Analyze, extract, encode and inject one file.

        Args:
            input_path: Source file
            output_path: Final output file
            encode_command_builder: Builds the encoder command line,
                ``default_encode_command`` if None

        Returns:
            Pipeline result

        Raises:
            PipelineError: Naming the stage that failed
        """
        start_time = time.time()
        self.monitor = self._new_monitor()
        input_path = Path(input_path)
        with _stage("probe"):
            output_path = validate_output_path(output_path, input_path)
        analysis = await self.analyze(input_path)
        metadata = analysis.metadata

        async with MetadataWorkflowCoordinator(
            self.config, self.runner, self.work_manager
        ) as coordinator:
            with _stage("extraction"):
                extracted = await coordinator.extract(input_path, analysis.approach)

            approach = coordinator.effective_approach
            adjustments = analysis.adjustments
            if approach != analysis.approach:
                with _stage("analysis"):
                    adjustments = calculate_adjustments(
                        approach, AdjustmentSettings.from_config(self.config)
                    )

            temp_output = coordinator.temp_output_path(output_path, extracted)
            with self.work_manager.work_space(f"{input_path.stem}_encode") as work_dir:
                request = EncodeRequest(
                    input_path=input_path,
                    output_path=temp_output,
                    progress_path=work_dir / "progress.log",
                    metadata=metadata,
                    approach=approach,
                    adjustments=adjustments,
                    crf=recommended_crf(adjustments, self.config.encoder.get_crf(metadata.width)),
                    preset=self.config.encoder.preset,
                    x265_params=build_x265_params(
                        approach, adjustments, metadata,
                        coordinator.external_encoder_params(extracted)
                    )
                )
                builder = encode_command_builder or (
                    lambda req: default_encode_command(req, self.config.tools.ffmpeg)
                )

                coordinator.begin_encoding()
                with _stage("encode"):
                    try:
                        await self._encode(builder(request), request, metadata)
                    except BaseException:
                        temp_output.unlink(missing_ok=True)
                        raise

            if self.monitor.cancelled:
                logger.warning(f"Encode of {input_path.name} cancelled")
                coordinator.abort()
                temp_output.unlink(missing_ok=True)
                return PipelineResult(
                    output_path=output_path,
                    analysis=analysis,
                    approach=approach,
                    adjustments=adjustments,
                    cancelled=True,
                    elapsed=time.time() - start_time
                )

            with _stage("injection"):
                await coordinator.inject(temp_output, output_path, extracted, metadata.frame_rate)

        elapsed = time.time() - start_time
        logger.info(f"Finished {output_path.name} in {format_duration(elapsed)}")
        return PipelineResult(
            output_path=output_path,
            analysis=analysis,
            approach=approach,
            adjustments=adjustments,
            elapsed=elapsed
        )

    async def _encode(self, cmd: List[str], request: EncodeRequest,
                      metadata: VideoMetadata) -> int:
        logger.info(f"Starting encode: {request.output_path.name}")
        logger.debug(f"Encoder command: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise ToolUnavailable(cmd[0], str(e)) from e

        stderr_lines: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        drain = asyncio.ensure_future(_drain(process.stderr, stderr_lines))
        try:
            async for report in self.monitor.attach(
                process, metadata.frame_count, metadata.frame_rate, request.progress_path
            ):
                if self.on_progress is not None:
                    self.on_progress(report)
            await drain
            return await self.monitor.wait(process, cmd=cmd, stderr="\n".join(stderr_lines))
        except BaseException:
            await self.monitor.terminate()
            drain.cancel()
            raise


async def analyze(input_path: Path, config: Optional[WorkflowConfig] = None,
                  runner: Optional[ToolRunner] = None) -> ContentAnalysis:
    """Analyze a file with a one-off pipeline."""
    return await Pipeline(config, runner=runner).analyze(Path(input_path))


async def process_file(input_path: Path, output_path: Path,
                       encode_command_builder: Optional[EncodeCommandBuilder] = None,
                       config: Optional[WorkflowConfig] = None,
                       **kwargs) -> PipelineResult:
    """Process a file with a one-off pipeline.

    Keyword arguments are passed to ``Pipeline``.
    """
    pipeline = Pipeline(config, **kwargs)
    return await pipeline.process_file(Path(input_path), Path(output_path), encode_command_builder)
