"""Dynamic range metadata analysis and preservation around an external encoder."""

from .config import WorkflowConfig
from .core.errors import HdrflowError, PipelineError
from .encoding import EncodingApproach, EncodingAdjustments, calculate_adjustments, resolve_approach
from .pipeline import ContentAnalysis, Pipeline, analyze, process_file

__version__ = "0.1.0"

__all__ = [
    "WorkflowConfig",
    "HdrflowError",
    "PipelineError",
    "EncodingApproach",
    "EncodingAdjustments",
    "calculate_adjustments",
    "resolve_approach",
    "ContentAnalysis",
    "Pipeline",
    "analyze",
    "process_file",
]
