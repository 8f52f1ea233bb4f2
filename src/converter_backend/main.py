from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .asset_store import AssetStore
from .configuration import Settings, load_settings
from .document_client import DocumentProcessingClient
from .exceptions import ClientInputError, GatewayError
from .generation_client import ImageGenerationClient
from .ingress import image_rule, pdf_rule, validate_uploads
from .models import (
    AssetInfo,
    CompressImageResponse,
    ErrorResponse,
    GenerateImageRequest,
    GenerateImageResponse,
    HealthResponse,
)
from .pipelines import FileResult, Pipelines
from .temp_store import TempFileStore
from .utils import attachment_header

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Provider clients and stores shared by every request."""

    settings: Settings
    temp_store: TempFileStore
    assets: AssetStore
    documents: DocumentProcessingClient
    generator: ImageGenerationClient

    @property
    def pipelines(self) -> Pipelines:
        return Pipelines(self.assets, self.documents, self.generator, self.settings)

    async def aclose(self) -> None:
        await self.documents.aclose()
        await self.generator.aclose()


def build_services(settings: Settings) -> Services:
    return Services(
        settings=settings,
        temp_store=TempFileStore(settings.uploads.temp_dir),
        assets=AssetStore.from_settings(settings),
        documents=DocumentProcessingClient.from_settings(settings),
        generator=ImageGenerationClient.from_settings(settings),
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _present(*uploads: Optional[UploadFile]) -> List[UploadFile]:
    return [upload for upload in uploads if upload is not None and upload.filename]


def _file_response(result: FileResult) -> Response:
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={"Content-Disposition": attachment_header(result.filename)},
    )


router = APIRouter(responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})


@router.get("/health", response_model=HealthResponse)
def healthcheck(services: Services = Depends(get_services)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc),
        services={
            "documentProcessing": services.documents.is_configured(),
            "assetHost": services.assets.is_configured(),
            "imageGeneration": services.generator.is_configured(),
        },
    )


@router.post("/compress")
async def compress_pdf(
    file: Optional[UploadFile] = File(None),
    services: Services = Depends(get_services),
) -> Response:
    limits = services.settings.uploads
    async with services.temp_store.session() as session:
        staged = await session.stage_all(_present(file))
        [upload] = validate_uploads(staged, pdf_rule(limits.max_file_size))
        result = await services.pipelines.compress_pdf(upload)
    return _file_response(result)


@router.post("/compress-image", response_model=CompressImageResponse)
async def compress_image(
    file: Optional[UploadFile] = File(None),
    services: Services = Depends(get_services),
) -> CompressImageResponse:
    limits = services.settings.uploads
    async with services.temp_store.session() as session:
        staged = await session.stage_all(_present(file))
        [upload] = validate_uploads(staged, image_rule(limits.max_file_size))
        compressed = await services.pipelines.compress_image(upload)
    return CompressImageResponse(download_url=compressed.download_url, size=compressed.size, format=compressed.format)


@router.post("/upscale")
async def upscale_image(
    file: Optional[UploadFile] = File(None),
    services: Services = Depends(get_services),
) -> Response:
    limits = services.settings.uploads
    async with services.temp_store.session() as session:
        staged = await session.stage_all(_present(file))
        [upload] = validate_uploads(staged, image_rule(limits.max_file_size))
        result = await services.pipelines.upscale_image(upload)
    return _file_response(result)


@router.post("/merge")
async def merge_pdfs(
    files: Optional[List[UploadFile]] = File(None),
    services: Services = Depends(get_services),
) -> Response:
    limits = services.settings.uploads
    async with services.temp_store.session() as session:
        staged = await session.stage_all(_present(*(files or [])))
        uploads = validate_uploads(
            staged,
            pdf_rule(limits.max_file_size, min_files=2, max_files=limits.max_files),
        )
        result = await services.pipelines.merge_pdfs(uploads)
    return _file_response(result)


@router.post("/image-to-pdf")
async def images_to_pdf(
    files: Optional[List[UploadFile]] = File(None),
    services: Services = Depends(get_services),
) -> Response:
    limits = services.settings.uploads
    async with services.temp_store.session() as session:
        staged = await session.stage_all(_present(*(files or [])))
        if not staged:
            raise ClientInputError("No images uploaded")
        uploads = validate_uploads(staged, image_rule(limits.max_file_size, max_files=limits.max_files))
        result = await services.pipelines.images_to_pdf(uploads)
    return _file_response(result)


@router.post("/generate-image", response_model=GenerateImageResponse)
async def generate_image(
    body: GenerateImageRequest,
    services: Services = Depends(get_services),
) -> GenerateImageResponse:
    image = await services.pipelines.generate_image(body.prompt)
    return GenerateImageResponse(photo=image.data_uri)


@router.get("/asset-info/{asset_id:path}", response_model=AssetInfo)
async def asset_info(asset_id: str, services: Services = Depends(get_services)) -> AssetInfo:
    return await services.pipelines.asset_info(asset_id)


async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code < 500:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message} ({exc.details})")
    else:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} ({exc.details})")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_payload()))


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info(f"{request.method} {request.url.path} rejected: invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"{request.method} {request.url.path} crashed")
    return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Typed configuration (default: config.yaml plus environment)
        services: Pre-built provider clients; tests pass doubles here
    """
    settings = settings or (services.settings if services else load_settings())
    configure_logging(settings.logging.level)
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await services.aclose()

    app = FastAPI(title="File Converter API", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(GatewayError, _gateway_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(router, prefix=settings.server.api_prefix)
    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("converter_backend.main:app", host="0.0.0.0", port=load_settings().server.port)
