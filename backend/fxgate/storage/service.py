"""Temporary file storage for media produced by function handlers.

Files live flat in one directory as ``<stem>_<16 hex><ext>`` and are
tracked in an in-memory index keyed by a random 32-hex id.  A file is
removed when its lifetime ends, when it is explicitly deleted, or when
it is evicted to make room for a newer file.  Expiry is enforced both by
``cleanup_old_files`` (run periodically from the app lifespan) and on
every read, so an expired id is never served even between sweeps.
"""
import asyncio
import json
import logging
import os
import re
import secrets
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from fxgate.core.errors import StorageError
from fxgate.storage.schemas import CleanupResult, StorageUsage, TempFileRecord

logger = logging.getLogger(__name__)

DEFAULT_LIFETIME_SECONDS = 3600
DEFAULT_MAX_TOTAL_BYTES = 500 * 1024 * 1024
DEFAULT_MAX_FILE_BYTES = 100 * 1024 * 1024
DEFAULT_ORPHAN_MAX_AGE_SECONDS = 2 * 3600

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")

MIME_TYPES = {
    # Images
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
    "tiff": "image/tiff",
    "svg": "image/svg+xml",
    # Video
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
    # Audio
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "m4a": "audio/mp4",
    "flac": "audio/flac",
    # Documents
    "pdf": "application/pdf",
    "txt": "text/plain",
    "json": "application/json",
    "xml": "application/xml",
    "zip": "application/zip",
}


def detect_mime_type(filename: str) -> str:
    """Guess a MIME type from the filename extension."""
    extension = Path(filename).suffix.lower().lstrip(".")
    return MIME_TYPES.get(extension, "application/octet-stream")


def safe_filename(filename: str) -> str:
    """Unique on-disk name: ``<stem>_<16 hex><ext>`` with unsafe chars replaced."""
    original = Path(filename or "file")
    unique = secrets.token_hex(8)
    return _UNSAFE_CHARS.sub("_", f"{original.stem}_{unique}{original.suffix}")


class TempStorageManager:
    """Owns the temp directory and the index of files in it.

    Args:
        base_dir: Directory for stored files (created if missing).
        file_lifetime: Default lifetime in seconds.
        max_total_bytes: Cap on the sum of tracked file sizes.
        max_file_bytes: Cap on any single file.
        orphan_max_age: Untracked files on disk older than this are swept.
        clock: Returns epoch seconds; tests pass a fake.
    """

    def __init__(
        self,
        base_dir: str,
        file_lifetime: int = DEFAULT_LIFETIME_SECONDS,
        max_total_bytes: int = DEFAULT_MAX_TOTAL_BYTES,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
        orphan_max_age: int = DEFAULT_ORPHAN_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.base_dir = Path(base_dir)
        self.file_lifetime = file_lifetime
        self.max_total_bytes = max_total_bytes
        self.max_file_bytes = max_file_bytes
        self.orphan_max_age = orphan_max_age
        self._clock = clock
        self._files: Dict[str, TempFileRecord] = {}
        self._lock = threading.RLock()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, settings) -> "TempStorageManager":
        """Build from a :class:`fxgate.config.StorageSettings`."""
        return cls(
            base_dir=settings.temp_dir,
            file_lifetime=settings.file_lifetime_seconds,
            max_total_bytes=settings.max_total_bytes,
            max_file_bytes=settings.max_file_bytes,
            orphan_max_age=settings.orphan_max_age_seconds,
        )

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _is_expired(self, record: TempFileRecord, now: datetime) -> bool:
        return record.expires_at <= now

    # ------------------------------------------------------------------
    # Create / read / delete
    # ------------------------------------------------------------------

    def create_temp_file(
        self,
        content: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        lifetime: Optional[int] = None,
        tags: Iterable[str] = (),
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TempFileRecord:
        """Write *content* to temp storage and start tracking it.

        Raises:
            StorageError: FILE_TOO_LARGE when over the per-file cap,
                STORAGE_ERROR when the write fails.
        """
        if not isinstance(content, (bytes, bytearray)):
            raise StorageError("Content must be bytes", code="INVALID_MEDIA")
        size = len(content)
        if size > self.max_file_bytes:
            raise StorageError(
                f"File too large. Max: {self.max_file_bytes // (1024 * 1024)}MB",
                code="FILE_TOO_LARGE",
                details={"size": size, "maxFileSize": self.max_file_bytes},
            )
        if size > self.max_total_bytes:
            raise StorageError(
                f"File too large for temp storage. Max: {self.max_total_bytes // (1024 * 1024)}MB",
                code="FILE_TOO_LARGE",
                details={"size": size, "maxTotalSize": self.max_total_bytes},
            )

        with self._lock:
            self._make_room(size)

            stored_name = safe_filename(filename)
            path = self.base_dir / stored_name
            try:
                path.write_bytes(bytes(content))
            except OSError as exc:
                raise StorageError(f"Failed to create temp file: {exc}") from exc

            now = self._now()
            file_id = secrets.token_hex(16)
            record = TempFileRecord(
                id=file_id,
                path=str(path),
                filename=stored_name,
                original_name=filename,
                size=size,
                mime_type=mime_type or detect_mime_type(filename),
                download_url=f"/temp/{file_id}",
                created_at=now,
                expires_at=now + timedelta(seconds=self.file_lifetime if lifetime is None else lifetime),
                last_accessed=now,
                tags=list(tags),
                metadata=metadata or {},
            )
            self._files[file_id] = record

        logger.info("Stored temp file %s (%s, %d bytes)", file_id, stored_name, size)
        return record

    def _make_room(self, incoming: int) -> None:
        """Evict the oldest tracked files until *incoming* bytes fit."""
        total = sum(record.size for record in self._files.values())
        if total + incoming <= self.max_total_bytes:
            return
        for record in sorted(self._files.values(), key=lambda r: r.created_at):
            if total + incoming <= self.max_total_bytes:
                break
            self._remove(record)
            total -= record.size
            logger.info("Evicted temp file %s to free %d bytes", record.id, record.size)

    def read_temp_file(self, file_id: str) -> Tuple[bytes, TempFileRecord]:
        """Return the content and record for *file_id*.

        Raises:
            StorageError: FILE_NOT_FOUND for unknown or expired ids,
                FILE_MISSING when the tracked file vanished from disk.
        """
        with self._lock:
            record = self._get_live(file_id)
            try:
                content = Path(record.path).read_bytes()
            except FileNotFoundError:
                self._files.pop(file_id, None)
                raise StorageError("File no longer exists on disk", code="FILE_MISSING",
                                   details={"fileId": file_id})
            record.access_count += 1
            record.last_accessed = self._now()
            return content, record

    def _get_live(self, file_id: str) -> TempFileRecord:
        record = self._files.get(file_id)
        if record is not None and self._is_expired(record, self._now()):
            self._remove(record)
            record = None
        if record is None:
            raise StorageError("File not found or expired", code="FILE_NOT_FOUND",
                               details={"fileId": file_id})
        return record

    def _remove(self, record: TempFileRecord) -> bool:
        """Forget *record* and unlink its file; True if bytes were freed."""
        self._files.pop(record.id, None)
        try:
            os.unlink(record.path)
        except FileNotFoundError:
            return False
        return True

    def delete_file(self, file_id: str) -> Dict[str, Any]:
        with self._lock:
            record = self._files.get(file_id)
            if record is None:
                raise StorageError("File not found", code="FILE_NOT_FOUND", details={"fileId": file_id})
            self._remove(record)
        logger.info("Deleted temp file %s", file_id)
        return {
            "fileId": file_id,
            "filename": record.filename,
            "size": record.size,
            "deletedAt": self._now().isoformat(),
        }

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_file_info(self, file_id: str) -> Dict[str, Any]:
        with self._lock:
            record = self._get_live(file_id)
            try:
                stat = os.stat(record.path)
            except FileNotFoundError:
                self._files.pop(file_id, None)
                raise StorageError("File not found on disk", code="FILE_MISSING",
                                   details={"fileId": file_id})
        info = record.to_dict()
        info["diskSize"] = stat.st_size
        info["modifiedAt"] = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat()
        return info

    def list_files(
        self,
        mime_type: Optional[str] = None,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Dict[str, Any]:
        """List live files, newest first, filtered by the given criteria."""
        wanted_tags = set(tags or ())
        files: List[Dict[str, Any]] = []
        with self._lock:
            for record in list(self._files.values()):
                if not Path(record.path).exists():
                    self._files.pop(record.id, None)
                    continue
                if mime_type and mime_type not in record.mime_type:
                    continue
                if min_size is not None and record.size < min_size:
                    continue
                if max_size is not None and record.size > max_size:
                    continue
                if wanted_tags and not wanted_tags.issubset(record.tags):
                    continue
                files.append(record.to_dict())
        files.sort(key=lambda item: item["createdAt"], reverse=True)
        return {
            "count": len(files),
            "totalSize": sum(item["size"] for item in files),
            "files": files,
        }

    def get_storage_usage(self) -> StorageUsage:
        with self._lock:
            total = sum(record.size for record in self._files.values())
            count = len(self._files)
        disk_usage = 0
        for entry in self.base_dir.iterdir():
            if entry.is_file():
                disk_usage += entry.stat().st_size
        return StorageUsage(
            total_size=total,
            file_count=count,
            disk_usage=disk_usage,
            max_total_size=self.max_total_bytes,
            max_file_size=self.max_file_bytes,
            usage_percentage=round(total / self.max_total_bytes * 100, 1) if self.max_total_bytes else 0.0,
            file_lifetime=self.file_lifetime,
        )

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def cleanup_old_files(self, force: bool = False) -> CleanupResult:
        """Delete expired (or, with *force*, all) files plus stale orphans."""
        now = self._now()
        deleted = 0
        freed = 0
        with self._lock:
            for record in list(self._files.values()):
                missing = not Path(record.path).exists()
                if force or missing or self._is_expired(record, now):
                    if self._remove(record):
                        freed += record.size
                    deleted += 1

            tracked = {Path(record.path).name for record in self._files.values()}
            cutoff = self._clock() - self.orphan_max_age
            for entry in self.base_dir.iterdir():
                if not entry.is_file() or entry.name in tracked:
                    continue
                try:
                    stat = entry.stat()
                    if stat.st_mtime < cutoff:
                        entry.unlink()
                        deleted += 1
                        freed += stat.st_size
                except FileNotFoundError:
                    continue

            remaining = len(self._files)

        if deleted:
            logger.info("Temp cleanup removed %d files (%d bytes)", deleted, freed)
        return CleanupResult(
            deleted_count=deleted,
            freed_space=freed,
            remaining_files=remaining,
            timestamp=now,
        )

    # ------------------------------------------------------------------
    # JSON helpers
    # ------------------------------------------------------------------

    def store_json(self, data: Any, filename: str = "data.json") -> TempFileRecord:
        content = json.dumps(data, indent=2, default=str).encode("utf-8")
        return self.create_temp_file(content, filename, mime_type="application/json", tags=["json", "data"])

    def read_json(self, file_id: str) -> Tuple[Any, TempFileRecord]:
        content, record = self.read_temp_file(file_id)
        try:
            return json.loads(content.decode("utf-8")), record
        except ValueError as exc:
            raise StorageError("Invalid JSON data", code="INVALID_FORMAT") from exc

    def __len__(self) -> int:
        return len(self._files)


async def run_periodic_cleanup(
    storage: TempStorageManager,
    shutdown_event: asyncio.Event,
    interval_seconds: float = 1800.0,
) -> None:
    """Sweep *storage* every *interval_seconds* until *shutdown_event* is set."""
    interval = max(1.0, float(interval_seconds))
    while not shutdown_event.is_set():
        try:
            storage.cleanup_old_files()
        except OSError:
            logger.exception("Temp storage cleanup failed")
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue
