"""
Client for the remote document-processing provider.

The provider speaks the iLoveAPI task protocol: a task is started on a tool,
inputs are attached by URL one at a time, the task is processed once with
tool-specific options and the single output is downloaded. PDF tools run on
iLovePDF and image tools on iLoveIMG; both share the same endpoints.

Each ``ProcessingTask`` walks a strict state machine::

    CREATED -> STARTED -> INPUTS_ADDED* -> PROCESSED -> DOWNLOADED

Calls made out of order raise ``TaskStateError``. A downloaded task is
finished and cannot be reused.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .asset_store import AssetReference
from .configuration import Settings
from .exceptions import DownloadFailed, ProcessingFailed, ProviderUnavailable, TaskStateError
from .models import CompressionLevel, TaskKind, TaskState
from .utils import split_extension

logger = logging.getLogger(__name__)

TOOL_NAMES: Dict[TaskKind, str] = {
    TaskKind.COMPRESS: "compress",
    TaskKind.MERGE: "merge",
    TaskKind.IMAGES_TO_PDF: "imagepdf",
    TaskKind.COMPRESS_IMAGE: "compressimage",
    TaskKind.UPSCALE_IMAGE: "upscaleimage",
    TaskKind.CONVERT_IMAGE: "convertimage",
}

IMAGE_TOOLS = frozenset({TaskKind.COMPRESS_IMAGE, TaskKind.UPSCALE_IMAGE, TaskKind.CONVERT_IMAGE})

# Provider vocabulary for compression strength
COMPRESSION_LEVELS: Dict[CompressionLevel, str] = {
    CompressionLevel.LOW: "low",
    CompressionLevel.RECOMMENDED: "recommended",
    CompressionLevel.HIGH: "extreme",
}

UPSCALE_MULTIPLIERS = (2, 4)


@dataclass
class ProcessingTask:
    """
    Client-side handle of a provider-hosted task.

    Attributes:
        kind: Operation the task performs
        state: Current position in the task state machine
        inputs: Asset references in the order they were attached
        options: Options the task was processed with
        task_id: Provider task identifier (set by ``start``)
        server: Provider host assigned to the task (set by ``start``)
        server_filenames: Provider-side names of attached inputs, aligned with ``inputs``
        output_filename: Name the provider gave the result (set by ``process``)
    """

    kind: TaskKind
    state: TaskState = TaskState.CREATED
    inputs: List[AssetReference] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)
    task_id: Optional[str] = None
    server: Optional[str] = None
    server_filenames: List[str] = field(default_factory=list)
    output_filename: Optional[str] = None

    @property
    def tool(self) -> str:
        return TOOL_NAMES[self.kind]

    @property
    def output_extension(self) -> str:
        return split_extension(self.output_filename or "")[1]


def _require_state(task: ProcessingTask, operation: str, *allowed: TaskState) -> None:
    if task.state not in allowed:
        expected = ", ".join(state.value for state in allowed)
        raise TaskStateError(
            f"Cannot {operation} a {task.kind.value} task in state {task.state.value}",
            details=f"expected one of: {expected}",
        )


def _diagnostic(response: httpx.Response) -> Any:
    """Best human-readable error the provider returned."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message") or error
        return error or body
    return body


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    """Parsed JSON object of a success reply; anything else reads as empty."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def translate_options(kind: TaskKind, options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Convert gateway options into the provider's parameters for ``kind``.

    Raises:
        ProcessingFailed: An option value the provider does not support
    """
    translated = dict(options or {})

    if kind in (TaskKind.COMPRESS, TaskKind.COMPRESS_IMAGE) and "compression_level" in translated:
        try:
            level = CompressionLevel(translated["compression_level"])
        except ValueError as exc:
            raise ProcessingFailed(
                "Unsupported compression level",
                details={"compression_level": translated["compression_level"], "allowed": [lvl.value for lvl in CompressionLevel]},
            ) from exc
        translated["compression_level"] = COMPRESSION_LEVELS[level]

    if kind == TaskKind.UPSCALE_IMAGE and "multiplier" in translated:
        if int(translated["multiplier"]) not in UPSCALE_MULTIPLIERS:
            raise ProcessingFailed("Unsupported upscale multiplier", details={"multiplier": translated["multiplier"]})
        translated["multiplier"] = int(translated["multiplier"])

    return translated


class DocumentProcessingClient:
    """Drives processing tasks against the provider over HTTP."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        public_key: str,
        pdf_base_url: str = "https://api.ilovepdf.com",
        image_base_url: str = "https://api.iloveimg.com",
        region: str = "eu",
    ) -> None:
        self._http = http
        self.public_key = public_key
        self.pdf_base_url = pdf_base_url.rstrip("/")
        self.image_base_url = image_base_url.rstrip("/")
        self.region = region
        self._tokens: Dict[str, str] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "DocumentProcessingClient":
        config = settings.document_processing
        http = httpx.AsyncClient(timeout=settings.providers.timeout_seconds)
        return cls(
            http,
            public_key=config.public_key,
            pdf_base_url=config.pdf_base_url,
            image_base_url=config.image_base_url,
            region=config.region,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    def is_configured(self) -> bool:
        return bool(self.public_key)

    def _base_url(self, kind: TaskKind) -> str:
        return self.image_base_url if kind in IMAGE_TOOLS else self.pdf_base_url

    def _server_url(self, task: ProcessingTask, path: str) -> str:
        return f"https://{task.server}/v1/{path}"

    async def _headers(self, kind: TaskKind) -> Dict[str, str]:
        base_url = self._base_url(kind)
        token = self._tokens.get(base_url)
        if token is None:
            token = await self._authenticate(base_url)
            self._tokens[base_url] = token
        return {"Authorization": f"Bearer {token}"}

    async def _send(self, kind: TaskKind, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Send an authorized request.

        Provider tokens expire, so a 401 drops the cached token and the call is
        repeated once with a fresh one.
        """
        response = await self._http.request(method, url, headers=await self._headers(kind), **kwargs)
        if response.status_code == 401:
            logger.info(f"Provider token for {self._base_url(kind)} was rejected; re-authenticating")
            self._tokens.pop(self._base_url(kind), None)
            response = await self._http.request(method, url, headers=await self._headers(kind), **kwargs)
        return response

    async def _authenticate(self, base_url: str) -> str:
        if not self.public_key:
            raise ProviderUnavailable("Processing provider is not configured", details="Set ILOVEPDF_PUBLIC_KEY")
        try:
            response = await self._http.post(f"{base_url}/v1/auth", json={"public_key": self.public_key})
        except httpx.HTTPError as exc:
            raise ProviderUnavailable("Processing provider is unreachable", details=str(exc)) from exc
        if response.is_error:
            raise ProviderUnavailable("Processing provider rejected credentials", details=_diagnostic(response))
        token = _json_body(response).get("token")
        if not token:
            raise ProviderUnavailable("Processing provider returned no token")
        return token

    def create_task(self, kind: TaskKind) -> ProcessingTask:
        return ProcessingTask(kind=kind)

    async def start(self, task: ProcessingTask) -> None:
        """
        Allocate the task on the provider.

        Raises:
            ProviderUnavailable: The provider is unreachable or refused the task
        """
        _require_state(task, "start", TaskState.CREATED)
        url = f"{self._base_url(task.kind)}/v1/start/{task.tool}/{self.region}"

        try:
            response = await self._send(task.kind, "GET", url)
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"Could not start {task.tool} task", details=str(exc)) from exc
        if response.is_error:
            raise ProviderUnavailable(f"Could not start {task.tool} task", details=_diagnostic(response))

        body = _json_body(response)
        task.task_id = body.get("task")
        task.server = body.get("server")
        if not task.task_id or not task.server:
            raise ProviderUnavailable(f"Could not start {task.tool} task", details="provider returned no task handle")

        task.state = TaskState.STARTED
        logger.info(f"Started {task.tool} task {task.task_id} on {task.server}")

    async def add_input(self, task: ProcessingTask, reference: AssetReference) -> None:
        """
        Attach one input by URL. Inputs keep the order of the calls.

        Raises:
            ProcessingFailed: The provider could not fetch or accept the input
        """
        _require_state(task, "add input to", TaskState.STARTED, TaskState.INPUTS_ADDED)
        try:
            response = await self._send(
                task.kind,
                "POST",
                self._server_url(task, "upload"),
                data={"task": task.task_id, "cloud_file": reference.url},
            )
        except httpx.HTTPError as exc:
            raise ProcessingFailed(f"Could not add input to {task.tool} task", details=str(exc)) from exc
        if response.is_error:
            raise ProcessingFailed(f"Could not add input to {task.tool} task", details=_diagnostic(response))

        server_filename = _json_body(response).get("server_filename")
        if not server_filename:
            raise ProcessingFailed(f"Could not add input to {task.tool} task", details="provider returned no file handle")

        task.inputs.append(reference)
        task.server_filenames.append(server_filename)
        task.state = TaskState.INPUTS_ADDED
        logger.debug(f"Added input {reference.asset_id} to task {task.task_id} (#{len(task.inputs)})")

    async def process(self, task: ProcessingTask, options: Optional[Dict[str, Any]] = None) -> None:
        """
        Run the task over its inputs.

        Raises:
            ProcessingFailed: An input is unreadable or the options are unsupported
        """
        _require_state(task, "process", TaskState.INPUTS_ADDED)
        translated = translate_options(task.kind, options)
        payload = {
            **translated,
            "task": task.task_id,
            "tool": task.tool,
            "files": [
                {"server_filename": server_filename, "filename": reference.asset_id.rsplit("/", 1)[-1]}
                for server_filename, reference in zip(task.server_filenames, task.inputs)
            ],
        }

        try:
            response = await self._send(task.kind, "POST", self._server_url(task, "process"), json=payload)
        except httpx.HTTPError as exc:
            raise ProcessingFailed(f"{task.tool} processing failed", details=str(exc)) from exc
        if response.is_error:
            raise ProcessingFailed(f"{task.tool} processing failed", details=_diagnostic(response))

        body = _json_body(response)
        task.options = translated
        task.output_filename = body.get("download_filename")
        task.state = TaskState.PROCESSED
        logger.info(f"Processed {task.tool} task {task.task_id} with {len(task.inputs)} input(s)")

    async def download(self, task: ProcessingTask) -> bytes:
        """
        Retrieve the task output. The task is finished afterwards.

        Raises:
            DownloadFailed: The output could not be retrieved (e.g. expired task)
        """
        _require_state(task, "download", TaskState.PROCESSED)
        try:
            response = await self._send(task.kind, "GET", self._server_url(task, f"download/{task.task_id}"))
        except httpx.HTTPError as exc:
            raise DownloadFailed(f"Could not download {task.tool} result", details=str(exc)) from exc
        if response.status_code != 200:
            raise DownloadFailed(f"Could not download {task.tool} result", details=_diagnostic(response))
        if not response.content:
            raise DownloadFailed(f"Could not download {task.tool} result", details="provider returned an empty file")

        task.state = TaskState.DOWNLOADED
        logger.info(f"Downloaded {len(response.content)} bytes from task {task.task_id}")
        return response.content
