"""Async client for the worker that stores errors and answers similarity queries.

Error submission is fire-and-forget and similarity queries are best-effort:
neither may fail or stall the hook that triggered them. Observation storage
is the exception and raises on failure.

Example:
    ```python
    async with WorkerClient("http://127.0.0.1:37777") as client:
        client.submit_error(record)
        similar = await client.find_similar_errors(record.error_message)
    ```
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger("error-learning")

OBSERVATIONS_PATH = "/api/sessions/observations"
ERRORS_PATH = "/api/sessions/errors"
SIMILAR_ERRORS_PATH = "/api/errors/similar"

DEFAULT_QUERY_TIMEOUT = 2.0
DEFAULT_DRAIN_TIMEOUT = 1.0

SIMILAR_ERRORS_HEADING = "## Related past errors"


class WorkerClientError(Exception):
    """Base exception for worker client errors."""


class WorkerRequestError(WorkerClientError):
    """Raised when a request whose outcome matters fails."""


class ErrorRecord(BaseModel):
    """Error submitted to the worker; the worker assigns the timestamp."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="contentSessionId")
    error_message: str
    error_type: str
    keywords: list[str] = Field(default_factory=list)
    file_path: Optional[str] = None
    command: Any = None
    cwd: str


class SimilarErrorMetadata(BaseModel):
    title: Any = None


class SimilarError(BaseModel):
    """A historical error returned by the similarity query."""

    metadata: Optional[SimilarErrorMetadata] = None

    @property
    def display_title(self) -> str:
        if self.metadata and self.metadata.title:
            return str(self.metadata.title)
        return "Error"


def format_similar_errors(errors: list[SimilarError]) -> str | None:
    """Render similar errors as a bulleted markdown block, or None if empty."""
    if not errors:
        return None
    lines = [f"- **{e.display_title}**" for e in errors]
    return f"{SIMILAR_ERRORS_HEADING}\n" + "\n".join(lines)


class WorkerClient:
    """Async worker client holding one pooled httpx.AsyncClient.

    Supports both context manager and manual lifecycle management. Pending
    error submissions get ``drain_timeout`` seconds to finish on close.
    """

    def __init__(
        self,
        base_url: str,
        query_timeout: float = DEFAULT_QUERY_TIMEOUT,
        drain_timeout: float = DEFAULT_DRAIN_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._query_timeout = query_timeout
        self._drain_timeout = drain_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def pending_submissions(self) -> int:
        return len(self._pending)

    async def connect(self) -> None:
        """Open the connection pool. Safe to call multiple times."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            transport=self._transport,
        )
        logger.debug("WorkerClient connected to %s", self._base_url)

    async def close(self) -> None:
        """Let pending submissions finish briefly, then close the pool."""
        if self._pending:
            _, still_pending = await asyncio.wait(
                set(self._pending), timeout=self._drain_timeout
            )
            for task in still_pending:
                task.cancel()
            if still_pending:
                logger.debug("Dropped %d unfinished error submissions", len(still_pending))
                await asyncio.gather(*still_pending, return_exceptions=True)
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.debug("WorkerClient connection closed")

    async def __aenter__(self) -> WorkerClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            await self.connect()
        return self._client

    async def store_observation(
        self,
        session_id: str,
        tool_name: str,
        tool_input: Any,
        tool_response: Any,
        cwd: str,
    ) -> None:
        """Send a tool invocation to the worker for storage.

        Raises:
            WorkerRequestError: If the worker is unreachable or rejects it.
        """
        client = await self._http()
        payload = {
            "contentSessionId": session_id,
            "tool_name": tool_name,
            "tool_input": tool_input,
            "tool_response": tool_response,
            "cwd": cwd,
        }
        try:
            response = await client.post(OBSERVATIONS_PATH, json=payload)
        except httpx.HTTPError as exc:
            raise WorkerRequestError(f"Observation storage failed: {exc}") from exc

        if response.is_error:
            raise WorkerRequestError(f"Observation storage failed: {response.status_code}")

        logger.debug("Observation sent successfully for %s", tool_name)

    def submit_error(self, record: ErrorRecord) -> asyncio.Task:
        """Schedule an error submission without waiting for it.

        Must be called from a running event loop. The returned task never
        raises; failures are only logged.
        """
        task = asyncio.get_running_loop().create_task(self._post_error(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _post_error(self, record: ErrorRecord) -> bool:
        try:
            client = await self._http()
            response = await client.post(
                ERRORS_PATH,
                json=record.model_dump(mode="json", by_alias=True, exclude_none=True),
            )
        except httpx.HTTPError as exc:
            logger.debug("Error storage failed: %s", exc)
            return False

        if response.is_error:
            logger.debug("Error storage failed: %s", response.status_code)
            return False
        return True

    async def find_similar_errors(self, error_message: str) -> list[SimilarError]:
        """Ask the worker for historical errors similar to ``error_message``.

        Bounded by the query timeout. Any failure is treated as no results.
        """
        try:
            return await asyncio.wait_for(
                self._get_similar_errors(error_message),
                timeout=self._query_timeout,
            )
        except asyncio.TimeoutError:
            logger.debug("Similar error query timed out after %ss", self._query_timeout)
        except httpx.HTTPError as exc:
            logger.debug("Similar error query failed: %s", exc)
        except ValueError as exc:
            logger.debug("Similar error query returned a malformed body: %s", exc)
        return []

    async def _get_similar_errors(self, error_message: str) -> list[SimilarError]:
        client = await self._http()
        response = await client.get(
            SIMILAR_ERRORS_PATH,
            params={"error_message": error_message},
        )
        if response.is_error:
            logger.debug("Similar error query failed: %s", response.status_code)
            return []
        body = response.json()
        raw_errors = body.get("errors") if isinstance(body, dict) else None
        if not isinstance(raw_errors, list):
            raise ValueError(f"expected an errors list, got {type(raw_errors).__name__}")

        errors = []
        for raw in raw_errors:
            try:
                errors.append(SimilarError.model_validate(raw))
            except ValidationError as exc:
                logger.debug("Skipping malformed similar error: %s", exc)
        return errors
