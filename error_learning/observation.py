"""PostToolUse observation handling — store the invocation, learn from failures."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel

from error_learning.error_detection import detect_bash_error, extract_error_features
from error_learning.worker_client import ErrorRecord, WorkerClient, format_similar_errors

logger = logging.getLogger("error-learning")


class ObservationInputError(ValueError):
    """Raised when hook input lacks context the worker records depend on."""


class HookInput(BaseModel):
    session_id: str = ""
    cwd: Optional[str] = None
    tool_name: Optional[str] = None
    tool_input: Any = None
    tool_response: Any = None


@dataclass
class ObservationResult:
    context: str | None = None  # Similar-errors block to show the user

    def to_hook_output(self) -> dict:
        return {"continue": True, "suppressOutput": True}


async def handle_observation(hook_input: HookInput, client: WorkerClient) -> ObservationResult:
    """Record a tool invocation and, for failed commands, look up past errors.

    The error record is submitted in the background; the similar-error
    lookup is awaited but bounded by the client's query timeout.

    Raises:
        ObservationInputError: If ``tool_name`` or ``cwd`` is missing.
        WorkerRequestError: If the observation could not be stored.
    """
    session_id = hook_input.session_id
    tool_name = hook_input.tool_name
    if not tool_name:
        raise ObservationInputError("handle_observation requires tool_name")

    logger.info("PostToolUse: %s (worker %s)", tool_name, client.base_url)

    if not hook_input.cwd:
        raise ObservationInputError(
            f"Missing cwd in PostToolUse hook input for session {session_id}, tool {tool_name}"
        )

    await client.store_observation(
        session_id=session_id,
        tool_name=tool_name,
        tool_input=hook_input.tool_input,
        tool_response=hook_input.tool_response,
        cwd=hook_input.cwd,
    )

    detection = detect_bash_error(tool_name, hook_input.tool_response or "")
    if not detection.is_error:
        return ObservationResult()

    error_message = detection.error_message or ""
    features = extract_error_features(error_message)
    client.submit_error(ErrorRecord(
        session_id=session_id,
        error_message=error_message,
        error_type=features.error_type,
        keywords=features.keywords,
        file_path=features.file_path,
        command=hook_input.tool_input,
        cwd=hook_input.cwd,
    ))

    similar = await client.find_similar_errors(error_message)
    return ObservationResult(context=format_similar_errors(similar))
