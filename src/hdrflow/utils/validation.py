"""Input and output path validation."""

import os
from pathlib import Path
from typing import Union

from ..core.errors import HdrflowError, ProbeError


def validate_input_file(path: Union[str, Path]) -> Path:
    """Validate that a media file exists and is readable.

    Args:
        path: Path to file to validate

    Returns:
        Path object for the file

    Raises:
        ProbeError: If the file is missing, not a file or not readable
    """
    path = Path(path)

    if not path.exists():
        raise ProbeError(f"Input file does not exist: {path}")

    if not path.is_file():
        raise ProbeError(f"Input path is not a file: {path}")

    if not os.access(path, os.R_OK):
        raise ProbeError(f"Input file is not readable: {path}")

    return path


def validate_output_path(output: Union[str, Path], input_path: Path) -> Path:
    """Validate that an output file can be written.

    Raises:
        HdrflowError: If the output would overwrite the input or its
            directory is not writable
    """
    output = Path(output)
    if output.resolve() == Path(input_path).resolve():
        raise HdrflowError(f"Output would overwrite input: {output}")

    output.parent.mkdir(parents=True, exist_ok=True)
    if not os.access(output.parent, os.W_OK):
        raise HdrflowError(f"Output directory not writable: {output.parent}")
    return output
