"""Configuration module for hdrflow settings and defaults."""

from .config import (
    WorkflowConfig,
    HdrConfig,
    DolbyVisionConfig,
    Hdr10PlusConfig,
    ToolsConfig,
    ProgressConfig,
    EncoderConfig,
    ClassificationConfig,
)
from . import default_config

__all__ = [
    "WorkflowConfig",
    "HdrConfig",
    "DolbyVisionConfig",
    "Hdr10PlusConfig",
    "ToolsConfig",
    "ProgressConfig",
    "ClassificationConfig",
    "EncoderConfig",
    "default_config",
]
