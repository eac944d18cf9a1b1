"""Metadata workflow coordinator.

Extracts Dolby Vision RPU and HDR10+ side files before encoding and
injects them into the encoded output afterwards. The coordinator owns a
per-file temporary directory that is removed on every exit path.

State flow::

    IDLE -> EXTRACTING -> EXTRACTION_COMPLETE -> ENCODING -> INJECTING -> DONE
         \\-> EXTRACTION_SKIPPED ------------/          \\-> INJECTION_SKIPPED -/

Any state other than DONE may move to ABORTED.
"""

import os
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import List, Optional, Tuple

from loguru import logger

from ..core.errors import ExtractionFailure, InjectionFailure, ToolError, ToolTimeout
from ..core.video.types import DolbyVisionProfile
from ..encoding.approach import EncodingApproach
from ..work_manager import WorkDirectoryManager
from . import hdr10plus
from .bitstream import demux_hevc, is_elementary_stream, remux_hevc, remux_hevc_mkvmerge
from .dolby_vision import DoviTool, RpuMetadata
from .hdr10plus import Hdr10PlusMetadata, Hdr10PlusTool
from .tools import ToolRunner

TEMP_OUTPUT_PREFIX = "temp_encode_"
PROFILE_7_CONVERSION_MODE = 2


class WorkflowState(Enum):
    """Coordinator lifecycle states."""
    IDLE = auto()
    EXTRACTING = auto()
    EXTRACTION_COMPLETE = auto()
    EXTRACTION_SKIPPED = auto()
    ENCODING = auto()
    INJECTING = auto()
    INJECTION_SKIPPED = auto()
    DONE = auto()
    ABORTED = auto()


TRANSITIONS = {
    WorkflowState.IDLE: {WorkflowState.EXTRACTING, WorkflowState.EXTRACTION_SKIPPED},
    WorkflowState.EXTRACTING: {WorkflowState.EXTRACTION_COMPLETE},
    WorkflowState.EXTRACTION_COMPLETE: {WorkflowState.ENCODING},
    WorkflowState.EXTRACTION_SKIPPED: {WorkflowState.ENCODING},
    WorkflowState.ENCODING: {WorkflowState.INJECTING, WorkflowState.INJECTION_SKIPPED},
    WorkflowState.INJECTING: {WorkflowState.DONE},
    WorkflowState.INJECTION_SKIPPED: {WorkflowState.DONE},
    WorkflowState.DONE: set(),
    WorkflowState.ABORTED: set(),
}


@dataclass
class ToolAvailability:
    """Which optional metadata tools can be used."""
    dovi_tool: bool = False
    hdr10plus_tool: bool = False


@dataclass
class ExtractedMetadata:
    """Side files extracted before encoding.

    Attributes:
        temp_dir: Coordinator-owned directory holding the side files
        hdr10_plus: HDR10+ JSON metadata, if extracted
        dolby_vision: Dolby Vision RPU, if extracted
    """
    temp_dir: Optional[Path] = None
    hdr10_plus: Optional[Hdr10PlusMetadata] = None
    dolby_vision: Optional[RpuMetadata] = None

    def has_metadata(self) -> bool:
        return self.hdr10_plus is not None or self.dolby_vision is not None

    def paths(self) -> List[Path]:
        """Every side file path referenced by this record."""
        paths = []
        if self.hdr10_plus is not None:
            paths.append(self.hdr10_plus.path)
        if self.dolby_vision is not None:
            paths.append(self.dolby_vision.path)
        return paths


class MetadataWorkflowCoordinator:
    """Drives extraction and injection for a single file.

    Use as an async context manager so cleanup runs on every exit path::

        async with MetadataWorkflowCoordinator(config) as coordinator:
            extracted = await coordinator.extract(input_path, approach)
            coordinator.begin_encoding()
            ...
            await coordinator.inject(temp_output, final_output, extracted, fps)
    """

    def __init__(self, config, runner: Optional[ToolRunner] = None,
                 work_manager: Optional[WorkDirectoryManager] = None):
        """Initialize coordinator.

        Args:
            config: ``WorkflowConfig``
            runner: Tool runner, built from the config if None
            work_manager: Work directory manager, built from the config if None
        """
        self.config = config
        self.runner = runner or ToolRunner(timeout=config.tools.tool_timeout)
        self.work_manager = work_manager or WorkDirectoryManager(config.work_dir)
        self.dovi_tool = DoviTool(self.runner, config.tools.dovi_tool)
        self.hdr10plus_tool = Hdr10PlusTool(self.runner, config.tools.hdr10plus_tool)

        self._state = WorkflowState.IDLE
        self._availability: Optional[ToolAvailability] = None
        self._extracted: Optional[ExtractedMetadata] = None
        self.effective_approach: Optional[EncodingApproach] = None

    @property
    def state(self) -> WorkflowState:
        return self._state

    def _transition(self, new_state: WorkflowState) -> None:
        if new_state is WorkflowState.ABORTED:
            if self._state is WorkflowState.DONE:
                raise RuntimeError("Cannot abort a completed workflow")
        elif new_state not in TRANSITIONS[self._state]:
            raise RuntimeError(
                f"Invalid workflow transition: {self._state.name} -> {new_state.name}"
            )
        logger.debug(f"Workflow state {self._state.name} -> {new_state.name}")
        self._state = new_state

    def abort(self) -> None:
        """Move to ABORTED unless the workflow already finished."""
        if self._state not in (WorkflowState.DONE, WorkflowState.ABORTED):
            self._transition(WorkflowState.ABORTED)

    async def check_tools(self) -> ToolAvailability:
        """Check and cache which metadata tools are usable."""
        if self._availability is None:
            self._availability = ToolAvailability(
                dovi_tool=await self.dovi_tool.is_available(),
                hdr10plus_tool=await self.hdr10plus_tool.is_available()
            )
            logger.info(
                f"Metadata tools: dovi_tool={'yes' if self._availability.dovi_tool else 'no'}, "
                f"hdr10plus_tool={'yes' if self._availability.hdr10plus_tool else 'no'}"
            )
        return self._availability

    def needs_extraction(self, approach: EncodingApproach) -> bool:
        """Whether the approach carries metadata that needs a side file."""
        return (
            (approach.needs_dolby_vision and self.config.dolby_vision.enabled) or
            (approach.needs_hdr10_plus and self.config.hdr10_plus.enabled)
        )

    async def extract(self, input_path: Path, approach: EncodingApproach) -> ExtractedMetadata:
        """Extract side files required by the approach.

        A missing tool or a failed extractor downgrades the approach instead
        of aborting: Dolby Vision falls back to its HDR base layer and
        HDR10+ falls back to HDR10. The result is in ``effective_approach``.

        Args:
            input_path: Source file
            approach: Resolved approach

        Returns:
            Extracted metadata, possibly empty

        Raises:
            ToolTimeout: If a tool invocation times out
        """
        if not self.needs_extraction(approach):
            self._transition(WorkflowState.EXTRACTION_SKIPPED)
            self.effective_approach = approach
            self._extracted = ExtractedMetadata()
            return self._extracted

        self._transition(WorkflowState.EXTRACTING)
        try:
            extracted = await self._extract(input_path, approach)
        except BaseException:
            self.abort()
            raise
        self._transition(WorkflowState.EXTRACTION_COMPLETE)
        return extracted

    async def _extract(self, input_path: Path, approach: EncodingApproach) -> ExtractedMetadata:
        temp_dir = self.work_manager.create(input_path.stem)
        extracted = ExtractedMetadata(temp_dir=temp_dir)
        self._extracted = extracted
        tools = await self.check_tools()
        current = approach

        want_dv = current.needs_dolby_vision and self.config.dolby_vision.enabled
        if current.needs_dolby_vision and not want_dv:
            current = current.without_dolby_vision()
        if want_dv and not tools.dovi_tool:
            logger.warning("dovi_tool not available, downgrading Dolby Vision to HDR")
            current = current.without_dolby_vision()
            want_dv = False

        want_hdr10_plus = current.needs_hdr10_plus and self.config.hdr10_plus.enabled
        if current.needs_hdr10_plus and not want_hdr10_plus:
            current = current.without_hdr10_plus()
        if want_hdr10_plus and not tools.hdr10plus_tool:
            logger.warning("hdr10plus_tool not available, downgrading HDR10+ to HDR10")
            current = current.without_hdr10_plus()
            want_hdr10_plus = False

        if want_dv or want_hdr10_plus:
            source = input_path
            demuxed = None
            if not is_elementary_stream(input_path):
                demuxed = temp_dir / "source.hevc"
                try:
                    source = await demux_hevc(
                        self.runner, self.config.tools.ffmpeg, input_path, demuxed,
                        error_cls=ExtractionFailure
                    )
                except ExtractionFailure as e:
                    logger.warning(f"Could not demux video bitstream, dropping dynamic metadata: {e.details}")
                    demuxed.unlink(missing_ok=True)
                    current = _drop_dynamic_metadata(current)
                    want_dv = want_hdr10_plus = False

            try:
                if want_dv:
                    current = await self._extract_dolby_vision(source, current, extracted)
                if want_hdr10_plus and current.needs_hdr10_plus:
                    current = await self._extract_hdr10_plus(source, current, extracted)
            finally:
                if demuxed is not None:
                    demuxed.unlink(missing_ok=True)

        if current != approach:
            logger.warning(f"Approach downgraded from {approach.label} to {current.label}")
        self.effective_approach = current
        return extracted

    async def _extract_dolby_vision(self, source: Path, approach: EncodingApproach,
                                    extracted: ExtractedMetadata) -> EncodingApproach:
        profile = approach.dolby_vision.profile
        mode = PROFILE_7_CONVERSION_MODE if profile is DolbyVisionProfile.PROFILE_7 else None
        rpu_path = extracted.temp_dir / "dolby_vision.rpu"
        try:
            extracted.dolby_vision = await self.dovi_tool.extract_rpu(
                source, rpu_path, profile, mode=mode
            )
        except ExtractionFailure as e:
            logger.warning(f"Dolby Vision RPU extraction failed, using HDR fallback: {e.details or e}")
            return approach.without_dolby_vision()
        return approach

    async def _extract_hdr10_plus(self, source: Path, approach: EncodingApproach,
                                  extracted: ExtractedMetadata) -> EncodingApproach:
        json_path = extracted.temp_dir / "hdr10plus.json"
        try:
            extracted.hdr10_plus = await self.hdr10plus_tool.extract(source, json_path)
        except ExtractionFailure as e:
            if e.no_metadata:
                logger.info("No HDR10+ dynamic metadata found, treating as HDR10")
            else:
                logger.warning(f"HDR10+ extraction failed, using HDR10 fallback: {e.details or e}")
            return approach.without_hdr10_plus()
        return approach

    def begin_encoding(self) -> None:
        """Mark that the external encode has started."""
        self._transition(WorkflowState.ENCODING)

    def needs_post_processing(self, extracted: ExtractedMetadata) -> bool:
        """Whether the encoded output must pass through injection."""
        return extracted.dolby_vision is not None or (
            extracted.hdr10_plus is not None and self.config.hdr10_plus.inject_after_encode
        )

    def temp_output_path(self, final_output: Path, extracted: ExtractedMetadata) -> Path:
        """Where the encoder should write.

        When injection follows, this is an intermediate file next to the
        final output so the final path never holds un-injected data.
        """
        if not self.needs_post_processing(extracted):
            return final_output
        return final_output.parent / f"{TEMP_OUTPUT_PREFIX}{final_output.name}"

    def external_encoder_params(self, extracted: ExtractedMetadata) -> List[Tuple[str, str]]:
        """Encoder parameters that carry metadata during encoding."""
        if extracted.hdr10_plus is not None and not self.config.hdr10_plus.inject_after_encode:
            return hdr10plus.encoder_params(extracted.hdr10_plus)
        return []

    async def inject(self, temp_output: Path, final_output: Path,
                     extracted: ExtractedMetadata, fps: float) -> Path:
        """Merge side files into the encoded output and place it.

        Args:
            temp_output: File the encoder wrote
            final_output: Destination path
            extracted: Metadata from ``extract``
            fps: Output frame rate, needed by the mkvmerge remux

        Returns:
            Final output path

        Raises:
            InjectionFailure: If any injection step fails. The encoded file is
                left at ``temp_output`` and never moved to ``final_output``.
            ToolTimeout: If a tool invocation times out
        """
        if not self.needs_post_processing(extracted):
            self._transition(WorkflowState.INJECTION_SKIPPED)
            if temp_output != final_output:
                os.replace(temp_output, final_output)
            self._transition(WorkflowState.DONE)
            return final_output

        self._transition(WorkflowState.INJECTING)
        try:
            await self._inject(temp_output, final_output, extracted, fps)
        except ToolTimeout:
            self.abort()
            raise
        except InjectionFailure:
            self.abort()
            logger.error(f"Metadata injection failed, encoded file kept at {temp_output}")
            raise
        except (ToolError, OSError) as e:
            self.abort()
            logger.error(f"Metadata injection failed, encoded file kept at {temp_output}")
            raise InjectionFailure(
                f"Metadata injection failed: {e}",
                stderr=getattr(e, "details", None) or str(e)
            ) from e
        except BaseException:
            self.abort()
            raise

        temp_output.unlink(missing_ok=True)
        self._transition(WorkflowState.DONE)
        logger.info(f"Metadata injected into {final_output}")
        return final_output

    async def _inject(self, temp_output: Path, final_output: Path,
                      extracted: ExtractedMetadata, fps: float) -> None:
        if extracted.temp_dir is None:
            extracted.temp_dir = self.work_manager.create(final_output.stem)
            self._extracted = extracted
        work_dir = extracted.temp_dir
        tools = self.config.tools
        staging = final_output.parent / f".partial_{final_output.name}"
        intermediates: List[Path] = []

        try:
            current = work_dir / "encoded.hevc"
            intermediates.append(current)
            await demux_hevc(self.runner, tools.ffmpeg, temp_output, current,
                             error_cls=InjectionFailure)

            if extracted.dolby_vision is not None:
                logger.info("Injecting Dolby Vision RPU")
                output = work_dir / "encoded_rpu.hevc"
                intermediates.append(output)
                current = await self.dovi_tool.inject_rpu(current, extracted.dolby_vision, output)

            if extracted.hdr10_plus is not None and self.config.hdr10_plus.inject_after_encode:
                logger.info("Injecting HDR10+ dynamic metadata")
                output = work_dir / "encoded_hdr10plus.hevc"
                intermediates.append(output)
                current = await self.hdr10plus_tool.inject(current, extracted.hdr10_plus, output)

            intermediates.append(staging)
            if tools.use_mkvmerge:
                await remux_hevc_mkvmerge(self.runner, tools.mkvmerge, current, temp_output,
                                          staging, fps, error_cls=InjectionFailure)
            else:
                await remux_hevc(self.runner, tools.ffmpeg, current, temp_output, staging,
                                 error_cls=InjectionFailure)
            os.replace(staging, final_output)
        finally:
            for path in intermediates:
                path.unlink(missing_ok=True)

    def cleanup(self) -> None:
        """Remove the temporary directory and every extracted side file."""
        extracted = self._extracted
        if extracted is None:
            return
        for path in extracted.paths():
            path.unlink(missing_ok=True)
        if extracted.temp_dir is not None:
            self.work_manager.cleanup(extracted.temp_dir)
        self._extracted = None

    async def __aenter__(self) -> "MetadataWorkflowCoordinator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.abort()
        self.cleanup()
        return False


def _drop_dynamic_metadata(approach: EncodingApproach) -> EncodingApproach:
    return approach.without_dolby_vision().without_hdr10_plus()
