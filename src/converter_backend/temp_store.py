"""
Disk-backed holding area for uploaded files.

Uploads are written to ``<root>/<upload id>/<sanitized name>`` so concurrent
requests never share a path. Files are released through ``TempFileStore.session``,
which deletes everything staged during the request exactly once, whether the
request succeeded or raised.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Iterable, List, Optional
from uuid import uuid4

from fastapi import UploadFile

from .utils import ensure_directory, sanitize_label, split_extension

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8 * 1024 * 1024


@dataclass
class UploadedFile:
    """An upload materialized on local disk."""

    path: Path
    original_filename: str
    size: int
    content_type: Optional[str] = None

    @property
    def extension(self) -> str:
        return split_extension(self.original_filename)[1]

    @property
    def stem(self) -> str:
        return split_extension(self.original_filename)[0]


def _sanitize_filename(filename: str) -> str:
    stem, suffix = split_extension(filename)
    safe_stem = sanitize_label(stem, fallback="upload")
    return f"{safe_stem}{suffix}"


class UploadSession:
    """Files staged for a single request."""

    def __init__(self, store: "TempFileStore") -> None:
        self._store = store
        self._files: List[UploadedFile] = []
        self._released = False

    @property
    def files(self) -> List[UploadedFile]:
        return list(self._files)

    async def stage(self, upload: UploadFile) -> UploadedFile:
        staged = await self._store.materialize(upload)
        self._files.append(staged)
        return staged

    async def stage_all(self, uploads: Iterable[UploadFile]) -> List[UploadedFile]:
        # Sequential on purpose: staged order is the user's selection order
        return [await self.stage(upload) for upload in uploads]

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        for staged in self._files:
            self._store.remove(staged)


class TempFileStore:
    def __init__(self, root: Path) -> None:
        self.root = ensure_directory(root)

    async def materialize(self, upload: UploadFile) -> UploadedFile:
        original_filename = upload.filename or "upload"
        upload_dir = ensure_directory(self.root / uuid4().hex)
        destination = upload_dir / _sanitize_filename(original_filename)

        size = 0
        try:
            with destination.open("wb") as buffer:
                while chunk := await upload.read(CHUNK_SIZE):
                    buffer.write(chunk)
                    size += len(chunk)
        except BaseException:
            # Not registered with a session yet
            self._discard(destination)
            raise
        finally:
            await upload.close()

        logger.debug(f"Staged upload {original_filename!r} at {destination} ({size} bytes)")
        return UploadedFile(
            path=destination,
            original_filename=original_filename,
            size=size,
            content_type=upload.content_type,
        )

    def remove(self, staged: UploadedFile) -> None:
        """Delete a staged file and its upload directory. Never raises."""
        self._discard(staged.path)

    def _discard(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug(f"Temp file already gone: {path}")
        except OSError as exc:
            logger.warning(f"Failed to delete temp file {path}: {exc}")
            return

        try:
            path.parent.rmdir()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning(f"Failed to delete temp directory {path.parent}: {exc}")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[UploadSession]:
        session = UploadSession(self)
        try:
            yield session
        finally:
            session.release()
