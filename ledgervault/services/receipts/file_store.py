"""
Receipt File Store

Receipt images live under one root, laid out as
    {profile_id}/{YYYY-MM}/{transaction_id}_{millis}{suffix}

Transactions keep these paths RELATIVE to the root. That keeps them valid
after a restore onto a different data directory, and it is the same
relative layout the backup archive stores under receipts/.

The store has no internal locking; the backup guard keeps backup and
restore from racing a receipt write at the operation level.
"""

import asyncio
import shutil
import time
from datetime import date
from pathlib import Path
from typing import Optional

import structlog

from ledgervault.config import StorageSettings, get_settings
from ledgervault.models.ledger import ProfileContext
from ledgervault.validation.validator import LedgerValidator


logger = structlog.get_logger(__name__)


def format_file_size(size_bytes: int) -> str:
    """Human-readable size (B, KB, MB, GB)."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 ** 2:
        return f"{size_bytes / 1024:.1f} KB"
    if size_bytes < 1024 ** 3:
        return f"{size_bytes / 1024 ** 2:.1f} MB"
    return f"{size_bytes / 1024 ** 3:.2f} GB"


class ReceiptFileStore:
    """Attachment files addressed by root-relative path."""

    def __init__(self, settings: Optional[StorageSettings] = None):
        self._settings = settings or get_settings().storage
        self._root = self._settings.receipts_path

    @property
    def root(self) -> Path:
        return self._root

    def relative_path_for(
        self,
        profile_id: str,
        transaction_id: str,
        on_date: date,
        suffix: str = ".jpg",
    ) -> str:
        LedgerValidator.require_safe_file_id(transaction_id)
        millis = int(time.time() * 1000)
        return f"{profile_id}/{on_date:%Y-%m}/{transaction_id}_{millis}{suffix}"

    def resolve(self, relative_path: str) -> Path:
        """
        Absolute path for a stored receipt.

        Raises:
            ValidationError: If the path would escape the receipt root
        """
        LedgerValidator.require_safe_path(relative_path)
        path = (self._root / relative_path).resolve()
        root = self._root.resolve()
        if root != path and root not in path.parents:
            LedgerValidator.reject("attachment", "invalid_path", "Receipt path escapes the receipt folder")
        return path

    async def save_receipt(
        self,
        ctx: ProfileContext,
        transaction_id: str,
        on_date: date,
        data: bytes,
        suffix: str = ".jpg",
    ) -> str:
        """
        Write receipt bytes and return the relative path to store on the transaction.
        """
        relative = self.relative_path_for(ctx.profile_id, transaction_id, on_date, suffix)
        target = self.resolve(relative)

        def write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(write)
        logger.info("receipt_saved", path=relative, size=len(data))
        return relative

    async def import_file(
        self,
        ctx: ProfileContext,
        transaction_id: str,
        on_date: date,
        source: Path,
    ) -> str:
        """Copy an existing image (e.g. a camera capture) into the store."""
        relative = self.relative_path_for(
            ctx.profile_id, transaction_id, on_date, source.suffix or ".jpg"
        )
        target = self.resolve(relative)

        def copy() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)

        await asyncio.to_thread(copy)
        return relative

    async def exists(self, relative_path: str) -> bool:
        return await asyncio.to_thread(self.resolve(relative_path).is_file)

    async def delete(self, relative_path: str) -> bool:
        path = self.resolve(relative_path)

        def remove() -> bool:
            if path.is_file():
                path.unlink()
                return True
            return False

        return await asyncio.to_thread(remove)

    async def delete_many(self, relative_paths: list[str]) -> int:
        deleted = 0
        for relative_path in relative_paths:
            if await self.delete(relative_path):
                deleted += 1
        return deleted

    async def delete_profile(self, profile_id: str) -> int:
        """Remove a profile's whole receipt folder. Returns files removed."""
        LedgerValidator.require_safe_file_id(profile_id)
        folder = self._root / profile_id

        def remove() -> int:
            if not folder.is_dir():
                return 0
            count = sum(1 for p in folder.rglob("*") if p.is_file())
            shutil.rmtree(folder)
            return count

        return await asyncio.to_thread(remove)

    async def delete_all(self) -> None:
        def remove() -> None:
            if self._root.exists():
                shutil.rmtree(self._root)

        await asyncio.to_thread(remove)

    def list_files_sync(self) -> list[str]:
        """Every receipt as a root-relative POSIX path, sorted."""
        if not self._root.is_dir():
            return []
        return sorted(
            path.relative_to(self._root).as_posix()
            for path in self._root.rglob("*")
            if path.is_file()
        )

    async def list_files(self, profile_id: Optional[str] = None) -> list[str]:
        files = await asyncio.to_thread(self.list_files_sync)
        if profile_id is None:
            return files
        return [f for f in files if f.startswith(f"{profile_id}/")]

    async def total_size(self) -> int:
        def size() -> int:
            if not self._root.is_dir():
                return 0
            return sum(p.stat().st_size for p in self._root.rglob("*") if p.is_file())

        return await asyncio.to_thread(size)

    async def cleanup_empty_directories(self) -> int:
        """Remove month and profile folders left empty by deletions."""

        def cleanup() -> int:
            if not self._root.is_dir():
                return 0
            removed = 0
            # Deepest first so parents empty out before they are checked
            for folder in sorted(
                (p for p in self._root.rglob("*") if p.is_dir()),
                key=lambda p: len(p.parts),
                reverse=True,
            ):
                if not any(folder.iterdir()):
                    folder.rmdir()
                    removed += 1
            return removed

        return await asyncio.to_thread(cleanup)

    async def find_orphans(self, profile_id: str, referenced: set[str]) -> list[str]:
        """Receipts in the profile's folder that no transaction points to."""
        files = await self.list_files(profile_id)
        return [f for f in files if f not in referenced]
