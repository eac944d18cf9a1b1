"""Temporary work directory management for hdrflow."""

import atexit
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Set

from loguru import logger


class WorkDirectoryManager:
    """Creates and removes per-file temporary directories.

    Every directory is unique to one in-flight file and is removed when
    its ``work_space`` exits, or at interpreter exit at the latest.
    """

    def __init__(self, parent: Optional[Path] = None):
        """Initialize work directory manager.

        Args:
            parent: Directory to create work directories in, system temp if None
        """
        self.parent = parent
        self._active_dirs: Set[Path] = set()
        atexit.register(self.cleanup_all)

    def create(self, label: str = "job") -> Path:
        """Create a new unique work directory.

        Args:
            label: Name fragment, usually the input file stem

        Returns:
            Path of the created directory
        """
        if self.parent is not None:
            self.parent.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(
            prefix=f"hdrflow_{label}_",
            dir=str(self.parent) if self.parent is not None else None
        ))
        self._active_dirs.add(work_dir)
        logger.debug(f"Created work directory: {work_dir}")
        return work_dir

    @contextmanager
    def work_space(self, label: str = "job") -> Iterator[Path]:
        """Context manager for work space creation and cleanup.

        Args:
            label: Name fragment, usually the input file stem

        Yields:
            Work directory path
        """
        work_dir = self.create(label)
        try:
            yield work_dir
        finally:
            self.cleanup(work_dir)

    def cleanup(self, work_dir: Path) -> None:
        """Remove a work directory and everything in it.

        Args:
            work_dir: Work directory to clean up
        """
        if work_dir.exists():
            shutil.rmtree(work_dir)
            logger.info(f"Cleaned up work directory: {work_dir}")
        self._active_dirs.discard(work_dir)

    def cleanup_all(self) -> None:
        """Clean up all active work directories."""
        for work_dir in list(self._active_dirs):
            try:
                self.cleanup(work_dir)
            except OSError as e:
                logger.error(f"Failed to clean up work directory {work_dir}: {e}")

    @property
    def active(self) -> Set[Path]:
        return set(self._active_dirs)
