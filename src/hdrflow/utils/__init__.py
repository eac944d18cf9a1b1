"""Utility functions and helpers."""

from .validation import validate_input_file, validate_output_path
from .logging import get_logger, intercept_stdlib_logging

__all__ = ['validate_input_file', 'validate_output_path', 'get_logger', 'intercept_stdlib_logging']
