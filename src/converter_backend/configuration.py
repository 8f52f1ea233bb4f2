from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel

# Provider credentials are interpolated from the environment (see config.yaml)
load_dotenv()

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [parent / "config/config.yaml" for parent in _HERE.parents[:5]]

CONFIG_PATH = next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)
if CONFIG_PATH is None:  # pragma: no cover - fail fast in misconfigured environments
    raise FileNotFoundError("Default config.yaml could not be located; ensure config/config.yaml ships alongside the package.")


class ServerSettings(BaseModel):
    api_prefix: str = "/api"
    port: int = 4000
    cors_origins: List[str] = ["*"]


class UploadSettings(BaseModel):
    temp_dir: Path = Path("uploads")
    max_file_size_mb: int = 10
    max_files: int = 30

    @property
    def max_file_size(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


class ProviderSettings(BaseModel):
    timeout_seconds: float = 60


class AssetFolders(BaseModel):
    pdfs: str = "pdfs"
    merge: str = "merge"
    images_to_pdf: str = "images-to-pdf"
    compressed_images: str = "compressed-images"
    enhanced_images: str = "image-enhanced"


class AssetSettings(BaseModel):
    bucket: str = ""
    region: str = ""
    endpoint_url: str = ""
    url_expiration_seconds: int = 3600
    cleanup_after_processing: bool = False
    folders: AssetFolders = AssetFolders()


class ImageToPdfOptions(BaseModel):
    pagesize: str = "fit"
    margin: int = 0
    orientation: str = "portrait"


class DocumentProcessingSettings(BaseModel):
    public_key: str = ""
    pdf_base_url: str = "https://api.ilovepdf.com"
    image_base_url: str = "https://api.iloveimg.com"
    region: str = "eu"
    compression_level: str = "recommended"
    image_compression_level: str = "recommended"
    upscale_multiplier: int = 2
    image_to_pdf: ImageToPdfOptions = ImageToPdfOptions()


class ImageGenerationSettings(BaseModel):
    api_key: str = ""
    endpoint: str = "https://router.huggingface.co/fal-ai/fal-ai/qwen-image"


class LoggingSettings(BaseModel):
    level: str = "INFO"


class Settings(BaseModel):
    server: ServerSettings = ServerSettings()
    uploads: UploadSettings = UploadSettings()
    providers: ProviderSettings = ProviderSettings()
    assets: AssetSettings = AssetSettings()
    document_processing: DocumentProcessingSettings = DocumentProcessingSettings()
    image_generation: ImageGenerationSettings = ImageGenerationSettings()
    logging: LoggingSettings = LoggingSettings()


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve, enum_to_str=True)  # type: ignore[return-value]


def make_runtime_config(overrides: Dict[str, Any]) -> DictConfig:
    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    base = OmegaConf.create(base_container)
    OmegaConf.set_struct(base, True)

    cli_config = OmegaConf.create(overrides)
    merged = DictConfig(OmegaConf.merge(base, cli_config))
    return merged


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Build typed settings from config.yaml merged with runtime overrides.

    Overrides use the same nested layout as config.yaml, e.g.
    ``{"uploads": {"max_file_size_mb": 5}}``. Unknown keys are rejected
    because the base config is in struct mode.
    """
    if not overrides:
        return _default_settings()
    runtime_config = make_runtime_config(overrides)
    resolved = OmegaConf.to_container(runtime_config, resolve=True, enum_to_str=True)
    return Settings.model_validate(resolved)


@lru_cache(maxsize=1)
def _default_settings() -> Settings:
    return Settings.model_validate(get_default_config_container(resolve=True))
