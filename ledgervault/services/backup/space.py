"""Free-space preconditions for backup and restore."""

import shutil
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

import structlog

from ledgervault.config import BackupSettings, get_settings
from ledgervault.models.backup import BackupStage, RestoreStage
from ledgervault.services.backup.errors import StorageSpaceError


logger = structlog.get_logger(__name__)

# shutil.disk_usage or anything returning an object with a `free` attribute
DiskUsage = Callable[[Union[str, Path]], Any]


def path_size(path: Path) -> int:
    """Size of a file, or of every file under a directory. Missing paths count as 0."""
    if path.is_file():
        return path.stat().st_size
    if path.is_dir():
        return sum(p.stat().st_size for p in path.rglob("*") if p.is_file())
    return 0


def total_size(paths: Iterable[Path]) -> int:
    return sum(path_size(path) for path in paths)


def _existing_ancestor(path: Path) -> Path:
    for candidate in (path, *path.parents):
        if candidate.exists():
            return candidate
    return Path(".")


class StorageSpaceChecker:
    """
    Fails fast, before anything is written, when the target volume cannot
    hold the payload plus the configured safety margin.
    """

    def __init__(
        self,
        settings: Optional[BackupSettings] = None,
        disk_usage: Optional[DiskUsage] = None,
    ):
        self._settings = settings or get_settings().backup
        self._disk_usage = disk_usage or shutil.disk_usage

    def available_bytes(self, directory: Path) -> int:
        return self._disk_usage(_existing_ancestor(directory)).free

    def ensure_available(
        self,
        directory: Path,
        payload_bytes: int,
        stage: Union[BackupStage, RestoreStage],
    ) -> int:
        """
        Returns:
            Bytes required (payload plus margin)

        Raises:
            StorageSpaceError: If the volume holding directory is too full
        """
        required = payload_bytes + self._settings.safety_margin_bytes
        available = self.available_bytes(directory)
        if available < required:
            logger.warning(
                "insufficient_space",
                directory=str(directory),
                required_bytes=required,
                available_bytes=available,
            )
            raise StorageSpaceError(required, available, stage)
        return required
