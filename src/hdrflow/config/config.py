"""Configuration module for analysis and metadata workflow settings."""

import os
import sys
import tempfile
from pathlib import Path
from typing import List, Optional

from loguru import logger
from pydantic import BaseModel, Field, ConfigDict, model_validator

from . import default_config as defaults
from ..utils.logging import intercept_stdlib_logging


_MODEL_CONFIG = ConfigDict(
    arbitrary_types_allowed=True,
    validate_default=True,
    str_strip_whitespace=True,
    validate_assignment=True
)


class HdrConfig(BaseModel):
    """HDR detection and adjustment settings."""

    model_config = _MODEL_CONFIG

    color_space_patterns: List[str] = Field(
        default_factory=lambda: list(defaults.COLOR_SPACE_PATTERNS),
        description="Substrings identifying BT.2020 family color spaces/primaries"
    )
    transfer_patterns: List[str] = Field(
        default_factory=lambda: list(defaults.TRANSFER_PATTERNS),
        description="Substrings identifying PQ transfer functions"
    )
    hlg_patterns: List[str] = Field(
        default_factory=lambda: list(defaults.HLG_PATTERNS),
        description="Substrings identifying HLG transfer functions"
    )
    crf_adjustment: float = Field(
        default=defaults.HDR_CRF_ADJUSTMENT,
        description="CRF delta applied to HDR content"
    )
    bitrate_multiplier: float = Field(
        default=defaults.HDR_BITRATE_MULTIPLIER,
        ge=1.0,
        description="Bitrate multiplier applied to HDR content"
    )
    detection_threshold: float = Field(
        default=defaults.DETECTION_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Minimum confidence for a format signal to count"
    )


class DolbyVisionConfig(BaseModel):
    """Dolby Vision handling settings.

    VBV values have no defaults: encoding Dolby Vision without them is a
    configuration error reported by the adjustment calculator.
    """

    model_config = _MODEL_CONFIG

    enabled: bool = Field(default=True, description="Preserve Dolby Vision metadata")
    vbv_bufsize: Optional[int] = Field(
        default=None,
        ge=1,
        description="VBV buffer size in kbit"
    )
    vbv_maxrate: Optional[int] = Field(
        default=None,
        ge=1,
        description="VBV maximum rate in kbit/s"
    )
    profile_specific_adjustments: bool = Field(
        default=defaults.DV_PROFILE_SPECIFIC_ADJUSTMENTS,
        description="Use per-profile CRF and bitrate constants"
    )
    preserve_profile_7: bool = Field(
        default=defaults.DV_PRESERVE_PROFILE_7,
        description="Keep dual-layer profile 7 sources as Dolby Vision"
    )

    @model_validator(mode="after")
    def _check_vbv_pair(self) -> "DolbyVisionConfig":
        if (self.vbv_bufsize is None) != (self.vbv_maxrate is None):
            raise ValueError("vbv_bufsize and vbv_maxrate must be set together")
        return self


class Hdr10PlusConfig(BaseModel):
    """HDR10+ handling settings."""

    model_config = _MODEL_CONFIG

    enabled: bool = Field(default=True, description="Preserve HDR10+ dynamic metadata")
    inject_after_encode: bool = Field(
        default=True,
        description="Inject metadata with hdr10plus_tool after encoding instead of "
                    "passing it to the encoder with dhdr10-info"
    )


class ToolsConfig(BaseModel):
    """External tool locations and limits."""

    model_config = _MODEL_CONFIG

    ffmpeg: str = Field(default=defaults.FFMPEG, description="ffmpeg executable")
    ffprobe: str = Field(default=defaults.FFPROBE, description="ffprobe executable")
    dovi_tool: str = Field(default=defaults.DOVI_TOOL, description="dovi_tool executable")
    hdr10plus_tool: str = Field(
        default=defaults.HDR10PLUS_TOOL,
        description="hdr10plus_tool executable"
    )
    mkvmerge: str = Field(default=defaults.MKVMERGE, description="mkvmerge executable")
    tool_timeout: float = Field(
        default=defaults.TOOL_TIMEOUT,
        gt=0,
        description="Timeout in seconds for each tool invocation"
    )
    use_mkvmerge: bool = Field(
        default=False,
        description="Remux Dolby Vision output with mkvmerge instead of ffmpeg"
    )


class ProgressConfig(BaseModel):
    """Progress monitor settings."""

    model_config = _MODEL_CONFIG

    poll_interval: float = Field(
        default=defaults.POLL_INTERVAL,
        gt=0,
        description="Seconds between progress polls"
    )
    stall_threshold: float = Field(
        default=defaults.STALL_THRESHOLD,
        gt=0,
        description="Seconds without frame progress before a stall is reported"
    )
    eta_smoothing: float = Field(
        default=defaults.ETA_SMOOTHING,
        gt=0.0,
        le=1.0,
        description="Exponential smoothing weight for the blended ETA"
    )
    show_progress_bar: bool = Field(default=True, description="Render a tqdm progress bar")


class ClassificationConfig(BaseModel):
    """Bitrate-per-pixel grain classification thresholds.

    These are coarse heuristics and should be recalibrated per library.
    """

    model_config = _MODEL_CONFIG

    light_grain_bpp: float = Field(default=defaults.LIGHT_GRAIN_BPP, gt=0)
    heavy_grain_bpp: float = Field(default=defaults.HEAVY_GRAIN_BPP, gt=0)

    @model_validator(mode="after")
    def _check_order(self) -> "ClassificationConfig":
        if self.heavy_grain_bpp < self.light_grain_bpp:
            raise ValueError("heavy_grain_bpp must not be below light_grain_bpp")
        return self


class EncoderConfig(BaseModel):
    """Base encoder settings that the adjustments are applied to."""

    model_config = _MODEL_CONFIG

    preset: str = Field(default=defaults.ENCODER_PRESET, description="x265 preset")
    crf_sd: int = Field(defaults.CRF_SD, ge=0, le=51, description="CRF for SD videos (width <= 1280)")
    crf_hd: int = Field(defaults.CRF_HD, ge=0, le=51, description="CRF for HD videos (width <= 1920)")
    crf_uhd: int = Field(defaults.CRF_UHD, ge=0, le=51, description="CRF for UHD videos (width > 1920)")

    def get_crf(self, width: int) -> int:
        """Get base CRF value based on video width.

        Args:
            width: Video width in pixels

        Returns:
            CRF value
        """
        if width <= 1280:
            return self.crf_sd
        elif width <= 1920:
            return self.crf_hd
        else:
            return self.crf_uhd


class WorkflowConfig(BaseModel):
    """Top level configuration passed explicitly through each stage."""

    model_config = _MODEL_CONFIG

    work_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "hdrflow",
        description="Parent directory for per-file temporary directories"
    )
    hdr: HdrConfig = Field(default_factory=HdrConfig)
    dolby_vision: DolbyVisionConfig = Field(default_factory=DolbyVisionConfig)
    hdr10_plus: Hdr10PlusConfig = Field(default_factory=Hdr10PlusConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    progress: ProgressConfig = Field(default_factory=ProgressConfig)
    classification: ClassificationConfig = Field(default_factory=ClassificationConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(default=None, description="Log file path")

    def __init__(self, **data):
        """Initialize config with validation."""
        super().__init__(**data)
        self._validate_paths()

    def _validate_paths(self) -> None:
        """Validate and create the work directory."""
        self.work_dir.mkdir(parents=True, exist_ok=True)
        if not os.access(self.work_dir, os.W_OK):
            raise ValueError(f"Work directory not writable: {self.work_dir}")

    def setup_logging(self) -> None:
        """Configure loguru sinks based on settings."""
        logger.remove()  # Remove default handler

        logger.add(
            sink=sys.stderr,
            level=self.log_level,
            format="<level>{level}</level> | "
                   "<cyan>{name}</cyan>:<cyan>{function}</cyan>:"
                   "<cyan>{line}</cyan> - <level>{message}</level>"
        )

        if self.log_file:
            logger.add(
                sink=str(self.log_file),
                level=self.log_level,
                rotation="100 MB",
                retention="1 week"
            )

        intercept_stdlib_logging(self.log_level)
