"""
Converter Backend - REST API for remote file conversions

This package provides a FastAPI-based web service that forwards uploaded
PDFs and images to remote providers and returns the results. It enables:

- PDF compression and merging
- Image compression, upscaling and image-to-PDF conversion
- Text-to-image generation
- Asset metadata lookup on the asset host

The backend is a thin orchestration layer: all conversion work happens at
the providers, and this code validates uploads, sequences provider calls and
shapes responses.

Key Components:
    - main: FastAPI application, dependency wiring and HTTP endpoints
    - pipelines: One orchestration pipeline per user-facing operation
    - temp_store: Disk-backed staging of uploads with scoped cleanup
    - ingress: Upload validation (extensions, sizes, file counts)
    - asset_store: S3 asset host client (push, describe, delete)
    - document_client: Processing task state machine for the PDF/image provider
    - generation_client: Image generation provider client
    - configuration: Config loading and merging logic
    - exceptions: Error taxonomy mapped to HTTP responses

Usage:
    Run the API server with:
        uvicorn converter_backend.main:app --reload --host 0.0.0.0 --port 4000

    Or use the development script:
        uv run uvicorn converter_backend.main:app --reload

Architecture Principles:
    - Provider clients are built once at startup and injected
    - Pipelines are independent of the HTTP framework
    - Temp files are released on every exit path
    - Multi-file inputs keep the user's upload order end to end
"""
