"""
Orchestration pipelines, one per user-facing operation.

Pipelines sequence the provider clients and return plain result objects; they
know nothing about FastAPI, so they can be driven directly from tests with
test doubles in place of the clients. Staged uploads are owned by the caller
and are not deleted here.

Multi-file operations push their inputs concurrently, then attach them to the
processing task one by one in upload order, so the output pages follow the
user's selection no matter which push finishes first.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .asset_store import AssetReference, AssetStore
from .configuration import Settings
from .document_client import DocumentProcessingClient, ProcessingTask
from .exceptions import ClientInputError, DownloadFailed, GenerationFailed
from .generation_client import GeneratedImage, ImageGenerationClient
from .models import AssetInfo, TaskKind
from .temp_store import UploadedFile

logger = logging.getLogger(__name__)

JPEG_EXTENSIONS = (".jpg", ".jpeg")


@dataclass(frozen=True)
class FileResult:
    """Binary output returned to the client as a download."""

    content: bytes
    filename: str
    media_type: str


@dataclass(frozen=True)
class CompressedImage:
    download_url: str
    size: int
    format: str
    asset_id: str


class Pipelines:
    def __init__(
        self,
        assets: AssetStore,
        documents: DocumentProcessingClient,
        generator: ImageGenerationClient,
        settings: Settings,
    ) -> None:
        self.assets = assets
        self.documents = documents
        self.generator = generator
        self.settings = settings

    @property
    def _folders(self):
        return self.settings.assets.folders

    async def push_all(self, uploads: Sequence[UploadedFile], folder: str) -> List[AssetReference]:
        """
        Push uploads concurrently; the result is indexed by upload order.

        If any push fails, the pushes still in flight are cancelled and awaited
        before the first error is re-raised, so nothing keeps reading staged
        files after the request has failed. Inputs that did reach the host are
        removed when ``cleanup_after_processing`` is set.
        """
        tasks = [
            asyncio.ensure_future(self.assets.push_file(upload.path, upload.original_filename, folder))
            for upload in uploads
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
            pushed = [outcome for outcome in outcomes if isinstance(outcome, AssetReference)]
            logger.warning(f"Fan-out push to {folder!r} failed; {len(pushed)} of {len(tasks)} inputs had been pushed")
            await self._discard(pushed)
            raise

    async def _discard(self, references: Sequence[AssetReference]) -> None:
        if references and self.settings.assets.cleanup_after_processing:
            await asyncio.gather(*(self.assets.delete_asset(reference) for reference in references))

    async def run_task(
        self,
        kind: TaskKind,
        references: Sequence[AssetReference],
        options: Optional[Dict[str, Any]] = None,
    ) -> Tuple[bytes, ProcessingTask]:
        """Drive one processing task from creation to download."""
        task = self.documents.create_task(kind)
        try:
            await self.documents.start(task)
            for reference in references:
                await self.documents.add_input(task, reference)
            await self.documents.process(task, options)
            content = await self.documents.download(task)
        finally:
            await self._discard(references)
        return content, task

    async def compress_pdf(self, upload: UploadedFile, compression_level: Optional[str] = None) -> FileResult:
        logger.info(f"Compressing PDF {upload.original_filename!r} ({upload.size} bytes)")
        reference = await self.assets.push_file(upload.path, upload.original_filename, self._folders.pdfs)
        level = compression_level or self.settings.document_processing.compression_level
        content, _ = await self.run_task(TaskKind.COMPRESS, [reference], {"compression_level": level})
        logger.info(f"Compressed {upload.original_filename!r}: {upload.size} -> {len(content)} bytes")
        return FileResult(content=content, filename=f"compressed_{upload.original_filename}", media_type="application/pdf")

    async def compress_image(self, upload: UploadedFile) -> CompressedImage:
        logger.info(f"Compressing image {upload.original_filename!r} ({upload.size} bytes)")
        folder = self._folders.compressed_images
        reference = await self.assets.push_file(upload.path, upload.original_filename, folder)
        level = self.settings.document_processing.image_compression_level
        content, task = await self.run_task(TaskKind.COMPRESS_IMAGE, [reference], {"compression_level": level})

        extension = task.output_extension or upload.extension
        result = await self.assets.push_buffer(content, f"compressed_{upload.stem}{extension}", folder)
        return CompressedImage(download_url=result.url, size=result.size, format=result.format, asset_id=result.asset_id)

    async def upscale_image(self, upload: UploadedFile) -> FileResult:
        logger.info(f"Upscaling image {upload.original_filename!r}")
        folder = self._folders.enhanced_images
        reference = await self.assets.push_file(upload.path, upload.original_filename, folder)
        multiplier = self.settings.document_processing.upscale_multiplier
        content, task = await self.run_task(TaskKind.UPSCALE_IMAGE, [reference], {"multiplier": multiplier})

        extension = task.output_extension or upload.extension
        if extension not in JPEG_EXTENSIONS:
            logger.info(f"Converting upscaled {extension or 'image'} output to JPEG")
            intermediate = await self.assets.push_buffer(content, f"{upload.stem}_upscaled{extension}", folder)
            content, _ = await self.run_task(TaskKind.CONVERT_IMAGE, [intermediate], {"to": "jpg"})

        return FileResult(content=content, filename=f"{upload.stem}_enhanced.jpg", media_type="image/jpeg")

    async def merge_pdfs(self, uploads: Sequence[UploadedFile]) -> FileResult:
        logger.info(f"Merging {len(uploads)} PDFs")
        references = await self.push_all(uploads, self._folders.merge)
        content, _ = await self.run_task(TaskKind.MERGE, references)
        return FileResult(content=content, filename="merged_document.pdf", media_type="application/pdf")

    async def images_to_pdf(self, uploads: Sequence[UploadedFile]) -> FileResult:
        logger.info(f"Converting {len(uploads)} images to PDF")
        references = await self.push_all(uploads, self._folders.images_to_pdf)
        options = self.settings.document_processing.image_to_pdf.model_dump()
        content, _ = await self.run_task(TaskKind.IMAGES_TO_PDF, references, options)
        filename = f"merged_images_{int(time.time() * 1000)}.pdf"
        return FileResult(content=content, filename=filename, media_type="application/pdf")

    async def generate_image(self, prompt: Optional[str]) -> GeneratedImage:
        if not prompt or not prompt.strip():
            raise ClientInputError("Prompt is required")
        logger.info(f"Generating image for prompt of {len(prompt)} characters")
        reference = await self.generator.submit_prompt(prompt.strip())
        try:
            return await self.generator.fetch_bytes(reference)
        except DownloadFailed as exc:
            # Same error shape as every other generate-image failure
            raise GenerationFailed(exc.message, details=exc.details, status_code=exc.status_code) from exc

    async def asset_info(self, asset_id: str) -> AssetInfo:
        return await self.assets.describe_asset(asset_id)
