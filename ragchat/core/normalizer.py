"""Response contract at the model-backend boundary.

Model clients may hand back a bare string, a loosely shaped dict or
something unusable. Everything that reaches the event stream goes through
``coerce_response`` and ``sanitize_response`` first, which either produce
a record with a string ``text`` or report an enumerated failure.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

# Fields used only while building the prompt
INTERNAL_KEYS = ("ragPrompt", "ragContext", "requestPrompt")

# Fields reset to [] when an upstream client returns a non-list
COERCED_ARRAY_FIELDS = (
    "attachments",
    "files",
    "content",
    "retrievedDocs",
    "citations",
    "tool_calls",
    "sources",
)

# Fields guaranteed to be lists on emitted messages
EMITTED_ARRAY_FIELDS = (
    "files",
    "attachments",
    "content",
    "retrievedDocs",
    "citations",
    "tool_calls",
    "sources",
    "actions",
    "moderations",
    "spans",
)


class ValidationFailure(str, Enum):
    """Why a model response was rejected."""
    NOT_AN_OBJECT = "not_an_object"
    MISSING_TEXT = "missing_text"


FAILURE_MESSAGES = {
    ValidationFailure.NOT_AN_OBJECT: "Model returned malformed data",
    ValidationFailure.MISSING_TEXT: "Invalid model response: missing text",
}


class MalformedResponseError(Exception):
    """A model response that cannot be emitted."""

    status_code = 500

    def __init__(self, failure: ValidationFailure):
        self.failure = failure
        super().__init__(FAILURE_MESSAGES[failure])


@dataclass
class ResponseCheck:
    """Outcome of validating a model response."""
    record: Optional[Dict[str, Any]] = None
    failure: Optional[ValidationFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    def unwrap(self) -> Dict[str, Any]:
        if self.failure is not None:
            raise MalformedResponseError(self.failure)
        return self.record


def generate_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


def text_from_content(content: Iterable[Any]) -> str:
    """Join content parts into plain text, one part per line."""
    parts = []
    for part in content:
        if isinstance(part, Mapping):
            parts.append(part.get("text") or "")
        else:
            parts.append(str(part) if part else "")
    return "\n".join(parts)


def _has_text(record: Mapping[str, Any]) -> bool:
    value = record.get("text")
    return bool(value) and isinstance(value, str)


def coerce_response(raw: Any) -> ResponseCheck:
    """Turn whatever the model client returned into a response record."""
    if isinstance(raw, str):
        logger.warning("[TurnController] Model returned raw string, normalizing")
        raw = {
            "messageId": generate_message_id(),
            "text": raw,
            "content": raw,
        }

    if not isinstance(raw, Mapping):
        logger.error(f"[TurnController] Malformed response from model: {raw!r}")
        return ResponseCheck(failure=ValidationFailure.NOT_AN_OBJECT)

    record = dict(raw)
    if not record.get("text") and isinstance(record.get("content"), list):
        record["text"] = text_from_content(record["content"])
    return ResponseCheck(record=record)


def sanitize_response(
    response: Dict[str, Any],
    user_message: Optional[Dict[str, Any]] = None,
) -> ResponseCheck:
    """Strip internal fields and coerce list-shaped fields before emission.

    ``user_message`` is cleaned in place; the response is copied.
    """
    final = dict(response)

    for key in INTERNAL_KEYS:
        final.pop(key, None)
        if user_message is not None:
            user_message.pop(key, None)

    for key in COERCED_ARRAY_FIELDS:
        if key in final and not isinstance(final[key], list):
            logger.warning(
                f"[Sanitizer] Coercing {key} to [] from type {type(final[key]).__name__}"
            )
            final[key] = []

    if not _has_text(final) and final.get("content"):
        final["text"] = text_from_content(final["content"])

    if not _has_text(final):
        logger.error("[TurnController] Response text is missing/invalid after normalization")
        logger.error(f"[TurnController] Response preview:\n{preview(final)}")
        return ResponseCheck(failure=ValidationFailure.MISSING_TEXT)

    return ResponseCheck(record=final)


def ensure_array_fields(
    record: Optional[Dict[str, Any]],
    fields: Iterable[str] = EMITTED_ARRAY_FIELDS,
) -> None:
    """Default every list-shaped field of ``record`` to a list."""
    if record is None:
        return
    for key in fields:
        if not isinstance(record.get(key), list):
            record[key] = []


def preview(record: Any, limit: int = 2000) -> str:
    """Short JSON-ish rendering of a record for diagnostics."""
    try:
        return json.dumps(record, indent=2, default=str)[:limit]
    except (TypeError, ValueError) as e:
        return f"<unserializable: {e}>"
