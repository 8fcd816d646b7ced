"""Retry wrapper for calls against transient-failure-prone stores.

Built on tenacity: exponential backoff bounded by ``max_timeout``, a fixed
number of retries, and the underlying error re-raised unmodified once the
retries are exhausted.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

import structlog
from sqlalchemy.exc import DBAPIError, OperationalError
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ingest_catalog.app.errors import TransientStoreError

if TYPE_CHECKING:
    from ingest_catalog.app.config import Settings

T = TypeVar("T")

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """``retries`` counts retries, so a call is attempted ``retries + 1`` times."""

    retries: int = 3
    min_timeout: float = 0.5
    max_timeout: float = 5.0
    factor: float = 2.0

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ValueError("retries must be >= 0")
        if self.factor < 1:
            raise ValueError("factor must be >= 1")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        return cls(retries=0)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RetryConfig":
        return cls(
            retries=max(0, settings.db_retries),
            min_timeout=max(0.0, settings.db_retry_min_timeout),
            max_timeout=max(0.0, settings.db_retry_max_timeout),
            factor=max(1.0, settings.db_retry_factor),
        )


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, TransientStoreError):
        return True
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


class RetryPolicy:
    def __init__(
        self,
        config: RetryConfig,
        *,
        is_retryable: Callable[[BaseException], bool] = is_transient,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._config = config
        self._is_retryable = is_retryable
        self._sleep = sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    def call(self, operation: Callable[[], T], *, description: str = "") -> T:
        """Run ``operation``, retrying transient failures.

        Raises:
            Exception: the last error raised by ``operation`` when it is not
                retryable or when the retries are exhausted.
        """
        kwargs = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        retrying = Retrying(
            stop=stop_after_attempt(self._config.retries + 1),
            wait=wait_exponential(
                multiplier=self._config.min_timeout,
                min=self._config.min_timeout,
                max=self._config.max_timeout,
                exp_base=self._config.factor,
            ),
            retry=retry_if_exception(self._is_retryable),
            reraise=True,
            before_sleep=self._before_sleep(description),
            **kwargs,
        )
        return retrying(operation)

    @staticmethod
    def _before_sleep(description: str) -> Callable[[RetryCallState], None]:
        def log_retry(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            logger.warning(
                "store_call_retry",
                operation=description,
                attempt=state.attempt_number,
                error=repr(error),
            )

        return log_retry
