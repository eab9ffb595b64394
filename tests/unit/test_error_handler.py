"""
ERROR HANDLER TESTS

Bounded collaborator calls: timeout, single retry for transient errors.
"""
import asyncio

import pytest

from error_handler import ErrorHandler, call_with_retry
from exceptions import CollaboratorError, TransientCollaboratorError

pytestmark = pytest.mark.asyncio(loop_scope="function")


class Flaky:
    """Fails with ``error`` for the first ``failures`` calls"""

    def __init__(self, failures, error, result="ok"):
        self.failures = failures
        self.error = error
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


def _transient():
    return TransientCollaboratorError(collaborator="test", message="flaky")


class TestCallWithRetry:

    async def test_success_first_try(self):
        operation = Flaky(0, _transient())
        assert await call_with_retry(operation, name="op", backoff=0) == "ok"
        assert operation.calls == 1

    async def test_transient_retried_once(self):
        operation = Flaky(1, _transient())
        assert await call_with_retry(operation, name="op", backoff=0) == "ok"
        assert operation.calls == 2

    async def test_transient_twice_raises(self):
        operation = Flaky(2, _transient())
        with pytest.raises(TransientCollaboratorError):
            await call_with_retry(operation, name="op", backoff=0)
        assert operation.calls == 2

    async def test_permanent_error_not_retried(self):
        operation = Flaky(1, CollaboratorError(collaborator="test", message="nope"))
        with pytest.raises(CollaboratorError):
            await call_with_retry(operation, name="op", backoff=0)
        assert operation.calls == 1

    async def test_timeout_is_transient(self):
        calls = []

        async def slow():
            calls.append(1)
            await asyncio.sleep(1)

        with pytest.raises(TransientCollaboratorError) as exc_info:
            await call_with_retry(slow, name="slow", timeout=0.01, backoff=0)

        assert len(calls) == 2
        assert "timed out" in exc_info.value.message

    async def test_before_retry_can_stop(self):
        operation = Flaky(1, _transient())

        async def already_done():
            return False

        with pytest.raises(TransientCollaboratorError):
            await call_with_retry(operation, name="op", backoff=0, before_retry=already_done)
        assert operation.calls == 1


class TestSafeExecute:

    async def test_returns_default_on_error(self):
        async def boom():
            raise RuntimeError("boom")

        assert await ErrorHandler.safe_execute_async(boom(), default=False) is False

    async def test_returns_result(self):
        async def fine():
            return 42

        assert await ErrorHandler.safe_execute_async(fine(), default=0) == 42
