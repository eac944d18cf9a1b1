"""Error types for dynamic range analysis and metadata workflows."""

from typing import List, Optional, Sequence, Union


class HdrflowError(Exception):
    """Base class for hdrflow errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        """Initialize error.

        Args:
            message: Error message
            details: Optional technical details
        """
        self.message = message
        self.details = details
        super().__init__(message)


class ConfigurationError(HdrflowError):
    """Configuration is missing values required by the resolved approach."""
    pass


class ProbeError(HdrflowError):
    """Media metadata is malformed or unreadable."""
    pass


class ToolUnavailable(HdrflowError):
    """An external tool could not be found or does not respond."""

    def __init__(self, tool: str, details: Optional[str] = None):
        super().__init__(f"Required tool not available: {tool}", details)
        self.tool = tool


def _format_cmd(cmd: Union[str, Sequence[str], None]) -> Optional[str]:
    if cmd is None:
        return None
    if isinstance(cmd, str):
        return cmd
    return " ".join(str(part) for part in cmd)


class ToolError(HdrflowError):
    """An external tool ran but reported a failure."""

    def __init__(self, message: str, cmd: Union[str, Sequence[str], None] = None,
                 stderr: Optional[str] = None, returncode: Optional[int] = None):
        """Initialize error.

        Args:
            message: Error message
            cmd: Command that failed
            stderr: Tool diagnostic output, kept verbatim
            returncode: Tool exit code if it exited
        """
        cmd_str = _format_cmd(cmd)
        details = f"Command: {cmd_str}\nError: {stderr}" if cmd_str else stderr
        super().__init__(message, details)
        self.cmd = cmd_str
        self.stderr = stderr
        self.returncode = returncode


class ToolTimeout(ToolError):
    """An external tool did not finish within its time limit."""

    def __init__(self, message: str, timeout: float,
                 cmd: Union[str, Sequence[str], None] = None,
                 stderr: Optional[str] = None):
        super().__init__(message, cmd=cmd, stderr=stderr)
        self.timeout = timeout


class ExtractionFailure(ToolError):
    """Side metadata extraction failed.

    Attributes:
        no_metadata: True when the tool reported that the input simply
            carries no metadata of the requested kind
    """

    def __init__(self, message: str, cmd: Union[str, Sequence[str], None] = None,
                 stderr: Optional[str] = None, returncode: Optional[int] = None,
                 no_metadata: bool = False):
        super().__init__(message, cmd=cmd, stderr=stderr, returncode=returncode)
        self.no_metadata = no_metadata


class InjectionFailure(ToolError):
    """Side metadata could not be merged back into the encoded output."""
    pass


class EncodeProcessFailure(ToolError):
    """The external encoder exited with a non-zero status."""
    pass


class StallTimeout(HdrflowError):
    """The encoder made no progress for longer than the allowed window."""

    def __init__(self, message: str, stalled_for: float, last_frame: int):
        super().__init__(message, f"No progress for {stalled_for:.1f}s at frame {last_frame}")
        self.stalled_for = stalled_for
        self.last_frame = last_frame


class PipelineError(HdrflowError):
    """A pipeline stage failed.

    The stage name is part of the message and the underlying error's
    diagnostic text is carried unchanged in ``details``.
    """

    STAGES: List[str] = ["probe", "analysis", "extraction", "encode", "injection"]

    def __init__(self, stage: str, cause: Exception):
        message = getattr(cause, "message", None) or str(cause)
        super().__init__(
            f"{stage.capitalize()} stage failed: {message}",
            getattr(cause, "details", None)
        )
        self.stage = stage
        self.cause = cause
