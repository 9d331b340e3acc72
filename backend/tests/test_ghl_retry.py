"""
Tests for GHL error classification and retry with exponential backoff.
"""
import httpx
import pytest
from unittest.mock import AsyncMock

from services.ghl_errors import (
    CRMError, ErrorKind, ToolTransportError, classify_error, classify_status
)
from utils.retry import backoff_delay, with_retry


def status_error(code, body=None):
    request = httpx.Request("GET", "https://services.leadconnectorhq.com/contacts/")
    response = httpx.Response(code, json=body or {"message": "nope"}, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class TestClassification:
    @pytest.mark.parametrize("code,kind,retryable", [
        (400, ErrorKind.BAD_REQUEST, False),
        (401, ErrorKind.AUTH_ERROR, False),
        (403, ErrorKind.SCOPE_ERROR, False),
        (404, ErrorKind.NOT_FOUND, False),
        (422, ErrorKind.VALIDATION_ERROR, False),
        (429, ErrorKind.RATE_LIMIT, True),
        (502, ErrorKind.SERVER_ERROR, True),
        (504, ErrorKind.SERVER_ERROR, True),
    ])
    def test_http_status_table(self, code, kind, retryable):
        error = classify_error(status_error(code))
        assert error.kind == kind
        assert error.retryable is retryable
        assert error.status_code == code
        assert error.response_body == {"message": "nope"}

    def test_unmapped_status_is_server_error(self):
        assert classify_status(599)[0] == ErrorKind.SERVER_ERROR

    def test_timeout_is_retryable_without_status(self):
        error = classify_error(httpx.ReadTimeout("read timed out"))
        assert error.kind == ErrorKind.SERVER_ERROR
        assert error.retryable is True
        assert error.status_code is None
        assert "timed out" in error.message

    def test_tool_transport_error_keeps_status(self):
        error = classify_error(ToolTransportError("down", tool_name="contacts_get-contact", status_code=503))
        assert error.kind == ErrorKind.SERVER_ERROR
        assert error.status_code == 503

    def test_crm_error_passes_through(self):
        original = CRMError(ErrorKind.NOT_FOUND, "missing", retryable=False, status_code=404)
        assert classify_error(original, {"op": "get_contact"}) is original
        assert original.context == {"op": "get_contact"}

    def test_to_dict(self):
        error = classify_error(status_error(422))
        data = error.to_dict()
        assert data["type"] == "VALIDATION_ERROR"
        assert data["status"] == 422
        assert data["retryable"] is False


class TestBackoff:
    def test_exponential_with_jitter(self):
        for attempt, base in [(0, 1.0), (1, 2.0), (2, 4.0)]:
            delay = backoff_delay(attempt, 1.0, 30.0)
            assert base <= delay <= base + 0.5

    def test_capped_at_max_delay(self):
        assert backoff_delay(10, 1.0, 30.0) == 30.0


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        operation = AsyncMock(side_effect=[status_error(503), status_error(429), "ok"])
        sleep = SleepRecorder()
        result = await with_retry(operation, max_retries=3, base_delay=1.0, sleep=sleep)
        assert result == "ok"
        assert operation.await_count == 3
        assert len(sleep.delays) == 2
        assert 1.0 <= sleep.delays[0] <= 1.5
        assert 2.0 <= sleep.delays[1] <= 2.5

    @pytest.mark.asyncio
    async def test_fails_max_retries_times_then_succeeds(self):
        operation = AsyncMock(side_effect=[status_error(503)] * 3 + ["ok"])
        sleep = SleepRecorder()
        result = await with_retry(operation, max_retries=3, sleep=sleep)
        assert result == "ok"
        assert operation.await_count == 4
        assert len(sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_one_failure_too_many_raises_last_error(self):
        errors = [status_error(code) for code in (500, 502, 503, 504)]
        operation = AsyncMock(side_effect=errors + ["ok"])
        with pytest.raises(CRMError) as exc_info:
            await with_retry(operation, max_retries=3, sleep=SleepRecorder())
        assert operation.await_count == 4
        assert exc_info.value.__cause__ is errors[-1]
        assert exc_info.value.status_code == 504

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self):
        operation = AsyncMock(side_effect=status_error(404))
        sleep = SleepRecorder()
        with pytest.raises(CRMError) as exc_info:
            await with_retry(operation, sleep=sleep)
        assert exc_info.value.kind == ErrorKind.NOT_FOUND
        assert operation.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_exhausted_raises_classified_error_with_cause(self):
        operation = AsyncMock(side_effect=status_error(500))
        sleep = SleepRecorder()
        with pytest.raises(CRMError) as exc_info:
            await with_retry(operation, max_retries=2, sleep=sleep)
        assert operation.await_count == 3
        assert len(sleep.delays) == 2
        assert exc_info.value.kind == ErrorKind.SERVER_ERROR
        assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)

    @pytest.mark.asyncio
    async def test_zero_retries_still_classifies(self):
        operation = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(CRMError) as exc_info:
            await with_retry(operation, max_retries=0, sleep=SleepRecorder())
        assert operation.await_count == 1
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_kind_outside_retryable_set_is_not_retried(self):
        operation = AsyncMock(side_effect=status_error(503))
        sleep = SleepRecorder()
        with pytest.raises(CRMError):
            await with_retry(operation, retryable_kinds={ErrorKind.RATE_LIMIT}, sleep=sleep)
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        calls = []
        operation = AsyncMock(side_effect=[status_error(429), "done"])
        await with_retry(
            operation,
            sleep=SleepRecorder(),
            on_retry=lambda attempt, error, delay: calls.append((attempt, error.kind)),
        )
        assert calls == [(1, ErrorKind.RATE_LIMIT)]
