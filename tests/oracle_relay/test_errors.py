from __future__ import annotations

import httpx
import pytest

from oracle_relay.errors import (
    AIServiceError,
    Classification,
    DecryptionError,
    KeyResolutionError,
    MalformedEventError,
    PayloadValidationError,
    StorageError,
    classify,
)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://uploader.example/upload")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"status {status}", request=request, response=response)


@pytest.mark.parametrize(
    "error",
    [
        StorageError("upload failed", status=503),
        AIServiceError("model unavailable"),
        ConnectionError("connection refused"),
        TimeoutError(),
        httpx.ConnectError("boom"),
        RuntimeError("Irys node returned 502 Bad Gateway"),
        RuntimeError("ETIMEDOUT while calling rpc"),
        RuntimeError("nonce too low"),
        RuntimeError("insufficient funds for gas * price + value"),
    ],
)
def test_transient_failures_are_retryable(error: BaseException) -> None:
    assert classify(error) is Classification.RETRYABLE


@pytest.mark.parametrize(
    "error",
    [
        KeyResolutionError("no key"),
        DecryptionError("bad tag"),
        PayloadValidationError("Validation Failed for PromptSubmitted"),
        MalformedEventError("missing conversationId"),
        ValueError("unexpected value"),
        KeyError("answerMessageId"),
    ],
)
def test_everything_else_is_fatal(error: BaseException) -> None:
    assert classify(error) is Classification.FATAL


@pytest.mark.parametrize("status, expected", [(500, Classification.RETRYABLE), (429, Classification.RETRYABLE), (408, Classification.RETRYABLE), (400, Classification.FATAL), (404, Classification.FATAL)])
def test_http_status_errors_follow_status_code(status: int, expected: Classification) -> None:
    assert classify(_status_error(status)) is expected


def test_fatal_type_wins_over_transient_message() -> None:
    assert classify(DecryptionError("storage timeout")) is Classification.FATAL
