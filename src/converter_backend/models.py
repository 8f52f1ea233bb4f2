from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskKind(str, Enum):
    COMPRESS = "compress"
    MERGE = "merge"
    IMAGES_TO_PDF = "images-to-pdf"
    COMPRESS_IMAGE = "compress-image"
    UPSCALE_IMAGE = "upscale-image"
    CONVERT_IMAGE = "convert-image"


class TaskState(str, Enum):
    CREATED = "created"
    STARTED = "started"
    INPUTS_ADDED = "inputs_added"
    PROCESSED = "processed"
    DOWNLOADED = "downloaded"


class CompressionLevel(str, Enum):
    LOW = "low"
    RECOMMENDED = "recommended"
    HIGH = "high"


class ErrorResponse(BaseModel):
    error: str
    details: Optional[Any] = None


class CompressImageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str = "Image compressed successfully"
    download_url: str = Field(serialization_alias="downloadUrl")
    size: int
    format: str


class GenerateImageRequest(BaseModel):
    prompt: Optional[str] = None


class GenerateImageResponse(BaseModel):
    success: bool = True
    photo: str


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    services: Dict[str, bool]


class AssetInfo(BaseModel):
    asset_id: str
    url: str
    size: int
    format: str
    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None
