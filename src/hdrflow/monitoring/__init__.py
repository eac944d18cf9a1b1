"""Encoder progress monitoring."""

from .progress import (
    EtaEstimator,
    ProgressReport,
    ProgressSample,
    format_duration,
    format_size,
    parse_progress_block,
    parse_stats_line,
)
from .monitor import ProgressMonitor, StallNotification

__all__ = [
    'EtaEstimator',
    'ProgressReport',
    'ProgressSample',
    'format_duration',
    'format_size',
    'parse_progress_block',
    'parse_stats_line',
    'ProgressMonitor',
    'StallNotification',
]
