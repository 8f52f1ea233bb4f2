"""Pre-flight checks on staged uploads, run before any provider is contacted."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import FrozenSet, List, Sequence

from .exceptions import ClientInputError
from .temp_store import UploadedFile
from .utils import IMAGE_EXTENSIONS, PDF_EXTENSIONS

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024


@dataclass(frozen=True)
class UploadRule:
    allowed_extensions: FrozenSet[str]
    kind_label: str
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    min_files: int = 1
    max_files: int = 1

    def allowed_list(self) -> List[str]:
        return sorted(self.allowed_extensions)


def image_rule(max_file_size: int = DEFAULT_MAX_FILE_SIZE, max_files: int = 1) -> UploadRule:
    return UploadRule(IMAGE_EXTENSIONS, "image", max_file_size=max_file_size, max_files=max_files)


def pdf_rule(max_file_size: int = DEFAULT_MAX_FILE_SIZE, min_files: int = 1, max_files: int = 1) -> UploadRule:
    return UploadRule(PDF_EXTENSIONS, "PDF", max_file_size=max_file_size, min_files=min_files, max_files=max_files)


def validate_uploads(files: Sequence[UploadedFile], rule: UploadRule) -> List[UploadedFile]:
    """
    Check every staged file against ``rule``.

    The whole request is rejected on the first violation, so no file is
    forwarded unless all of them pass. Returns the files in received order.

    Raises:
        ClientInputError: no files, too many or too few files, a disallowed
            extension, an empty file or a file above the size limit
    """
    if not files:
        raise ClientInputError("No file uploaded" if rule.max_files == 1 else "No files uploaded")

    if len(files) < rule.min_files:
        raise ClientInputError(
            f"At least {rule.min_files} {rule.kind_label} files are required",
            details={"received": len(files)},
        )

    if len(files) > rule.max_files:
        raise ClientInputError(
            f"Too many files; at most {rule.max_files} allowed",
            details={"received": len(files)},
        )

    for staged in files:
        if staged.extension not in rule.allowed_extensions:
            logger.info(f"Rejected upload {staged.original_filename!r}: extension {staged.extension or '<none>'} not allowed")
            raise ClientInputError(
                f"Only {rule.kind_label} files are supported.",
                details={"file": staged.original_filename, "allowed": rule.allowed_list()},
            )

        if staged.size == 0:
            raise ClientInputError("Uploaded file is empty", details={"file": staged.original_filename})

        if staged.size > rule.max_file_size:
            raise ClientInputError(
                "Uploaded file is too large",
                details={
                    "file": staged.original_filename,
                    "size": staged.size,
                    "max_size": rule.max_file_size,
                },
            )

    return list(files)
