"""
Centralized Error Handler for Goal Forge

Bounded execution for collaborator calls: per-call timeout, a single
retry for transient failures, consistent error logging.

Author: Goal Forge Core Team
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar
from typing import Coroutine

from config import RETRY_BACKOFF_SECONDS, STEP_TIMEOUT_SECONDS
from exceptions import TransientCollaboratorError
from logging_config import get_logger, log_error

logger = get_logger(__name__)
T = TypeVar('T')


class ErrorHandler:
    """Centralized error handling with proper logging"""

    @staticmethod
    async def safe_execute_async(
        coro: Coroutine[Any, Any, T],
        default: T = None,
        context: dict | None = None,
        log_level: str = "ERROR"
    ) -> T:
        """
        Await ``coro``; on failure log and return ``default``.

        Only for work whose failure must never reach the caller
        (notifications, cache refreshes).

        Usage:
            delivered = await ErrorHandler.safe_execute_async(
                webhook.deliver(payload),
                default=False,
                context={"owner": owner}
            )
        """
        try:
            return await coro
        except Exception as e:
            log_error(e, context, log_level)
            return default


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    timeout: float | None = None,
    retries: int = 1,
    backoff: float | None = None,
    before_retry: Callable[[], Awaitable[bool]] | None = None,
) -> T:
    """
    Run ``operation`` with a timeout, retrying transient failures.

    ``operation`` is a zero-argument factory so each attempt gets a fresh
    coroutine. Timeouts count as transient. Anything that is not a
    TransientCollaboratorError propagates immediately.

    ``before_retry`` is awaited before every retry; returning False stops
    retrying and re-raises the last error. The credential mint uses it
    to check "already minted" instead of blindly minting twice.

    Usage:
        board = await call_with_retry(
            lambda: adapter.create_board(title, desc),
            name="create_board",
        )
    """
    timeout = STEP_TIMEOUT_SECONDS if timeout is None else timeout
    backoff = RETRY_BACKOFF_SECONDS if backoff is None else backoff
    attempt = 0

    while True:
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError as e:
            error = TransientCollaboratorError(
                collaborator=name,
                message=f"{name} timed out after {timeout}s",
                details={"timeout": timeout}
            )
            error.__cause__ = e
        except TransientCollaboratorError as e:
            error = e

        if attempt >= retries:
            logger.warning("transient_retries_exhausted", operation=name, attempts=attempt + 1)
            raise error

        attempt += 1
        logger.info(
            "transient_error_retrying",
            operation=name,
            attempt=attempt,
            error=str(error),
            backoff=backoff * attempt
        )
        await asyncio.sleep(backoff * attempt)

        if before_retry is not None and not await before_retry():
            raise error
