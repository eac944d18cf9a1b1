"""Side metadata extraction and injection around the encoder."""

from .tools import ToolResult, ToolRunner
from .workflow import (
    ExtractedMetadata,
    MetadataWorkflowCoordinator,
    ToolAvailability,
    WorkflowState,
)

__all__ = [
    'ToolResult',
    'ToolRunner',
    'ExtractedMetadata',
    'MetadataWorkflowCoordinator',
    'ToolAvailability',
    'WorkflowState',
]
