"""Schemas for decrypted request payloads."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError

from .errors import PayloadValidationError

MAX_PROMPT_LENGTH = 5000
MAX_TITLE_LENGTH = 100
MAX_INSTRUCTIONS_LENGTH = 1000


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sessionKey: Optional[StrictStr] = None


class PromptPayload(_Payload):
    promptText: StrictStr = Field(min_length=1, max_length=MAX_PROMPT_LENGTH)
    isNewConversation: StrictBool
    previousMessageId: Optional[StrictStr] = None
    previousMessageCID: Optional[StrictStr] = None


class RegenerationPayload(_Payload):
    instructions: StrictStr = Field(min_length=1, max_length=MAX_INSTRUCTIONS_LENGTH)
    promptMessageCID: StrictStr = Field(min_length=1)
    originalAnswerMessageCID: StrictStr = Field(min_length=1)


class BranchPayload(_Payload):
    originalTitle: StrictStr = Field(min_length=1, max_length=MAX_TITLE_LENGTH)


class MetadataUpdatePayload(_Payload):
    title: StrictStr = Field(min_length=1, max_length=MAX_TITLE_LENGTH)
    isDeleted: StrictBool


SCHEMAS: Dict[str, Type[_Payload]] = {
    "PromptSubmitted": PromptPayload,
    "RegenerationRequested": RegenerationPayload,
    "BranchRequested": BranchPayload,
    "MetadataUpdateRequested": MetadataUpdatePayload,
}


def validate_payload(raw: Any, event_name: str) -> _Payload:
    """Parse ``raw`` (JSON text or mapping) with the schema for ``event_name``."""

    schema = SCHEMAS.get(event_name)
    try:
        if schema is None:
            raise ValueError(f"No schema defined for event: {event_name}")
        data = json.loads(raw) if isinstance(raw, (str, bytes, bytearray)) else raw
        return schema.model_validate(data)
    except (ValueError, ValidationError) as exc:
        raise PayloadValidationError(f"Validation Failed for {event_name}: {exc}") from exc


__all__ = [
    "BranchPayload",
    "MetadataUpdatePayload",
    "PromptPayload",
    "RegenerationPayload",
    "SCHEMAS",
    "validate_payload",
]
