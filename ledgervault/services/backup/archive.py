"""
Backup Archive Format

ARCHIVE LAYOUT:
    manifest.json
    database/<database_name>          (self-contained snapshot, no WAL)
    preferences/<files...>            (verbatim copy of the preference directory)
    receipts/<profile_id>/<YYYY-MM>/<file>

Every archive carries explicit directory entries for the three sections,
so an empty section is still recognisably present.

All functions here are synchronous; the engines call them through
asyncio.to_thread.
"""

import json
import shutil
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from ledgervault.config import BackupSettings
from ledgervault.models.backup import ArchiveManifest
from ledgervault.services.backup.errors import ArchiveValidationError
from ledgervault.services.storage.schema import SQLITE_HEADER


logger = structlog.get_logger(__name__)

DATABASE_SECTION = "database"
PREFERENCES_SECTION = "preferences"
RECEIPTS_SECTION = "receipts"
REQUIRED_SECTIONS = (DATABASE_SECTION, PREFERENCES_SECTION, RECEIPTS_SECTION)
MANIFEST_NAME = "manifest.json"


def archive_name(section: str, relative: str) -> str:
    return f"{section}/{relative}"


class ArchiveWriter:
    """Thin wrapper over a ZIP_DEFLATED zipfile that knows the section layout."""

    def __init__(self, path: Path):
        self.path = path
        path.parent.mkdir(parents=True, exist_ok=True)
        self._zip = zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED)

    def add_section(self, section: str) -> None:
        self._zip.writestr(zipfile.ZipInfo(f"{section}/"), b"")

    def add_file(self, section: str, relative: str, source: Path) -> None:
        self._zip.write(source, archive_name(section, relative))

    def add_tree(self, section: str, root: Path) -> int:
        """Add every file under root. Returns the number of files written."""
        if not root.is_dir():
            return 0
        written = 0
        for path in sorted(root.rglob("*")):
            if path.is_file():
                self.add_file(section, path.relative_to(root).as_posix(), path)
                written += 1
        return written

    def write_manifest(self, manifest: ArchiveManifest) -> None:
        self._zip.writestr(MANIFEST_NAME, manifest.model_dump_json(indent=2))

    def close(self) -> None:
        self._zip.close()


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------

def _is_safe_member(name: str) -> bool:
    if not name or "\x00" in name or name.startswith(("/", "\\")):
        return False
    parts = PurePosixPath(name.replace("\\", "/")).parts
    return ".." not in parts and not (parts and parts[0].endswith(":"))


def read_manifest(archive: zipfile.ZipFile) -> Optional[ArchiveManifest]:
    """
    Parse manifest.json if the archive has one.

    Raises:
        ArchiveValidationError: If the manifest exists but cannot be parsed
    """
    if MANIFEST_NAME not in archive.namelist():
        return None
    try:
        return ArchiveManifest.model_validate(json.loads(archive.read(MANIFEST_NAME)))
    except (json.JSONDecodeError, UnicodeDecodeError, PydanticValidationError) as e:
        raise ArchiveValidationError(f"Backup manifest is unreadable: {e}") from e


def validate_archive(
    path: Path,
    settings: BackupSettings,
    database_name: str,
    current_schema_version: int,
) -> Optional[ArchiveManifest]:
    """
    Check an archive before it is reported complete or restored.

    VALIDATION RULES:
    1. File size within [min_archive_bytes, max_archive_bytes]
    2. ZIP readable with every CRC intact
    3. No entry escapes the archive root
    4. database/, preferences/ and receipts/ present
    5. database/<database_name> present and starts with the SQLite header
    6. Manifest, if present, parses and is not from a newer schema

    Returns:
        The manifest, or None for archives written without one

    Raises:
        ArchiveValidationError: Naming the first rule that failed
    """
    if not path.is_file():
        raise ArchiveValidationError(f"Backup file not found: {path}")

    size = path.stat().st_size
    if size < settings.min_archive_bytes:
        raise ArchiveValidationError(f"Backup file is too small ({size} bytes)")
    if size > settings.max_archive_bytes:
        raise ArchiveValidationError(
            f"Backup file is too large ({size // (1024 * 1024)} MB)"
        )

    try:
        with zipfile.ZipFile(path) as archive:
            bad_member = archive.testzip()
            if bad_member is not None:
                raise ArchiveValidationError(f"Backup is corrupted: bad CRC in {bad_member}")

            names = archive.namelist()
            if not names:
                raise ArchiveValidationError("Backup archive is empty")

            unsafe = [name for name in names if not _is_safe_member(name)]
            if unsafe:
                raise ArchiveValidationError(f"Backup contains unsafe entry: {unsafe[0]}")

            for section in REQUIRED_SECTIONS:
                if not any(name.startswith(f"{section}/") for name in names):
                    raise ArchiveValidationError(f"Backup missing {section} section")

            database_entry = archive_name(DATABASE_SECTION, database_name)
            if database_entry not in names:
                raise ArchiveValidationError("Backup missing main database file")
            with archive.open(database_entry) as handle:
                header = handle.read(len(SQLITE_HEADER))
            if header != SQLITE_HEADER:
                raise ArchiveValidationError("Database file has invalid SQLite header")

            manifest = read_manifest(archive)
    except (zipfile.BadZipFile, zlib.error, EOFError) as e:
        raise ArchiveValidationError(f"Backup is not a readable ZIP archive: {e}") from e

    if manifest is not None and manifest.schema_version > current_schema_version:
        raise ArchiveValidationError(
            f"Backup was made with a newer version (schema {manifest.schema_version}); "
            "update the app before restoring"
        )

    logger.info(
        "archive_validated",
        path=str(path),
        size_bytes=size,
        entries=len(names),
        has_manifest=manifest is not None,
    )
    return manifest


def extract_archive(path: Path, destination: Path) -> int:
    """
    Extract every entry under destination.

    Returns:
        Number of files extracted

    Raises:
        ArchiveValidationError: If an entry would land outside destination
    """
    destination.mkdir(parents=True, exist_ok=True)
    root = destination.resolve()
    extracted = 0
    try:
        with zipfile.ZipFile(path) as archive:
            for member in archive.infolist():
                target = (root / member.filename).resolve()
                if not _is_safe_member(member.filename) or (
                    target != root and root not in target.parents
                ):
                    raise ArchiveValidationError(
                        f"Backup entry escapes the staging folder: {member.filename}"
                    )
                if member.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(member) as source, open(target, "wb") as sink:
                    shutil.copyfileobj(source, sink)
                extracted += 1
    except (zipfile.BadZipFile, zlib.error, EOFError) as e:
        raise ArchiveValidationError(f"Backup is not a readable ZIP archive: {e}") from e
    return extracted


def uncompressed_size(path: Path) -> int:
    """Bytes the archive occupies once extracted."""
    try:
        with zipfile.ZipFile(path) as archive:
            return sum(member.file_size for member in archive.infolist())
    except zipfile.BadZipFile as e:
        raise ArchiveValidationError(f"Backup is not a readable ZIP archive: {e}") from e
