# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Bounded retries with capped exponential backoff and a permanent-failure
escape hatch, built on tenacity.
"""
import time
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..exceptions import ProcessError, RetryExhausted

T = TypeVar("T")

PermanentCheck = Callable[[BaseException], bool]
RetryObserver = Callable[[BaseException, int], None]


def is_permanent_process_error(error: BaseException) -> bool:
    """
    Default bail check: a missing binary, a permission problem or an
    unreachable Docker daemon will not go away on its own.
    """
    return isinstance(error, ProcessError) and error.permanent


class RetryPolicy:
    """
    A reusable retry configuration.

    ``retries`` counts re-invocations, so an operation runs at most
    ``retries + 1`` times. The delay before retry *k* is
    ``min(max_delay, min_delay * 2 ** (k - 1))``.
    """

    def __init__(
        self,
        retries: int = 3,
        min_delay: float = 1.0,
        max_delay: float = 30.0,
        is_permanent: Optional[PermanentCheck] = None,
        on_retry: Optional[RetryObserver] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if retries < 0:
            raise ValueError("retries must be >= 0")
        self.retries = retries
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.is_permanent = is_permanent
        self.on_retry = on_retry
        self.sleep = sleep

    def _should_retry(self, error: BaseException) -> bool:
        if self.is_permanent is not None and self.is_permanent(error):
            return False
        return isinstance(error, Exception)

    def _before_sleep(self, state: RetryCallState) -> None:
        if self.on_retry is not None:
            self.on_retry(state.outcome.exception(), state.attempt_number)

    def call(self, operation: Callable[[], T]) -> T:
        """
        Invokes ``operation`` until it succeeds, fails permanently or the
        retry budget is spent.

        :raises RetryExhausted: When every attempt failed; chained from the last error.
        :raises Exception: The original error, untouched, when it is permanent.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=self.min_delay, min=self.min_delay, max=self.max_delay),
            retry=retry_if_exception(self._should_retry),
            before_sleep=self._before_sleep,
            sleep=self.sleep,
            reraise=False,
        )
        try:
            return retrying(operation)
        except RetryError as e:
            last_attempt = e.last_attempt
            last_error = last_attempt.exception()
            raise RetryExhausted(last_error, last_attempt.attempt_number) from last_error


def with_retry(
    operation: Callable[[], T],
    retries: int = 3,
    min_delay: float = 1.0,
    max_delay: float = 30.0,
    is_permanent: Optional[PermanentCheck] = None,
    on_retry: Optional[RetryObserver] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    One-off form of :class:`RetryPolicy`.

    Example:
        >>> with_retry(lambda: runner.run("docker", ["info"], silent=True),
        ...            retries=3, is_permanent=is_permanent_process_error)
    """
    policy = RetryPolicy(
        retries=retries,
        min_delay=min_delay,
        max_delay=max_delay,
        is_permanent=is_permanent,
        on_retry=on_retry,
        sleep=sleep,
    )
    return policy.call(operation)
