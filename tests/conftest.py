"""
Pytest configuration and fixtures for Converter Backend tests.

Provider clients are replaced with in-memory doubles that record every call,
so tests can assert on what would have reached the providers.
"""

import asyncio
import base64
import os
import shutil
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="converter_test_uploads_")
os.environ.setdefault("ASSET_BUCKET_NAME", "")

from converter_backend.asset_store import AssetReference
from converter_backend.configuration import load_settings
from converter_backend.document_client import ProcessingTask
from converter_backend.exceptions import AssetNotFound, ProcessingFailed
from converter_backend.generation_client import GeneratedAssetRef, GeneratedImage
from converter_backend.main import Services, create_app
from converter_backend.models import AssetInfo, TaskState
from converter_backend.temp_store import TempFileStore
from converter_backend.utils import split_extension

PNG_1X1 = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

MINIMAL_PDF = b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R 4 0 R] /Count 2 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>
endobj
4 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>
endobj
trailer
<< /Size 5 /Root 1 0 R >>
%%EOF"""


class FakeAssetStore:
    """
    Asset host double.

    ``delays`` maps a filename to a push delay in seconds; ``failures`` maps a
    filename to the exception its push raises once the delay has passed.
    """

    def __init__(self):
        self.pushed = []
        self.deleted = []
        self.delays = {}
        self.failures = {}
        self.completion_order = []
        self.known_assets = {}

    def is_configured(self):
        return True

    def _reference(self, name_hint, size, folder):
        asset_id = f"{folder}/{name_hint}" if folder else name_hint
        return AssetReference(
            url=f"https://assets.test/{asset_id}",
            asset_id=asset_id,
            size=size,
            format=split_extension(name_hint)[1].lstrip("."),
        )

    async def push_file(self, local_path, name_hint, folder=""):
        self.pushed.append(("file", name_hint))
        await asyncio.sleep(self.delays.get(name_hint, 0))
        if name_hint in self.failures:
            raise self.failures[name_hint]
        self.completion_order.append(name_hint)
        return self._reference(name_hint, Path(local_path).stat().st_size, folder)

    async def push_buffer(self, data, name_hint, folder=""):
        self.pushed.append(("buffer", name_hint))
        return self._reference(name_hint, len(data), folder)

    async def delete_asset(self, reference):
        self.deleted.append(reference.asset_id)

    async def describe_asset(self, asset_id):
        if asset_id not in self.known_assets:
            raise AssetNotFound("File not found", details=asset_id)
        return self.known_assets[asset_id]


class RecordingDocumentClient:
    """Processing provider double that keeps every task it created."""

    def __init__(self):
        self.tasks = []
        self.result = b"%PDF-1.4 processed"
        self.output_filenames = {}
        self.fail_on_process = None

    def is_configured(self):
        return True

    async def aclose(self):
        pass

    def create_task(self, kind):
        task = ProcessingTask(kind=kind)
        self.tasks.append(task)
        return task

    async def start(self, task):
        task.task_id = f"task-{len(self.tasks)}"
        task.server = "api.test"
        task.state = TaskState.STARTED

    async def add_input(self, task, reference):
        task.inputs.append(reference)
        task.server_filenames.append(f"srv-{len(task.inputs)}")
        task.state = TaskState.INPUTS_ADDED

    async def process(self, task, options=None):
        if self.fail_on_process is not None:
            raise self.fail_on_process
        task.options = dict(options or {})
        task.output_filename = self.output_filenames.get(task.kind)
        task.state = TaskState.PROCESSED

    async def download(self, task):
        task.state = TaskState.DOWNLOADED
        return self.result

    @property
    def input_names(self):
        return [[ref.asset_id.rsplit("/", 1)[-1] for ref in task.inputs] for task in self.tasks]


class FakeGenerator:
    def __init__(self):
        self.prompts = []
        self.error = None
        self.fetch_error = None
        self.image = GeneratedImage(content=PNG_1X1, media_type="image/png")

    def is_configured(self):
        return True

    async def aclose(self):
        pass

    async def submit_prompt(self, text):
        self.prompts.append(text)
        if self.error is not None:
            raise self.error
        return GeneratedAssetRef(url="https://images.test/generated.png")

    async def fetch_bytes(self, ref):
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.image


@pytest.fixture
def upload_root(tmp_path):
    root = tmp_path / "uploads"
    yield root
    shutil.rmtree(root, ignore_errors=True)


@pytest.fixture
def settings():
    return load_settings()


@pytest.fixture
def assets():
    return FakeAssetStore()


@pytest.fixture
def documents():
    return RecordingDocumentClient()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def services(settings, upload_root, assets, documents, generator):
    return Services(
        settings=settings,
        temp_store=TempFileStore(upload_root),
        assets=assets,
        documents=documents,
        generator=generator,
    )


@pytest.fixture
def client(services):
    """Create a test client for the FastAPI app with provider doubles."""
    return TestClient(create_app(services=services))


@pytest.fixture
def sample_pdf():
    return MINIMAL_PDF


@pytest.fixture
def sample_png():
    return PNG_1X1


@pytest.fixture
def known_asset(assets):
    info = AssetInfo(asset_id="pdfs/report_abc.pdf", url="https://assets.test/pdfs/report_abc.pdf", size=42, format="pdf")
    assets.known_assets[info.asset_id] = info
    return info


@pytest.fixture
def processing_failure(documents):
    documents.fail_on_process = ProcessingFailed("compress processing failed", details="Damaged file")
    return documents.fail_on_process
