"""
Retry Policy
===========
Bounded retries with exponential backoff and endpoint fallback for collaborator calls
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence, Tuple, Type, TypeVar

from ..core.core_constants import RetryDefaults
from ..core.core_exceptions import CollaboratorError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Shared retry policy for RPC and HTTP collaborators.

    Every attempt is bounded by attempt_timeout, so a call either returns
    or fails with CollaboratorError after max_attempts per endpoint.
    """
    max_attempts: int = RetryDefaults.MAX_ATTEMPTS
    base_delay: float = RetryDefaults.BASE_DELAY
    max_delay: float = RetryDefaults.MAX_DELAY
    jitter: bool = True
    attempt_timeout: float = RetryDefaults.ATTEMPT_TIMEOUT
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be positive")

    def calculate_delay(self, attempt: int) -> float:
        """Backoff delay after the given 0-based attempt"""
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter:
            delay = delay * (0.5 + random.random())
        return delay

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> T:
        """Run operation until it succeeds or attempts are exhausted"""
        last_error = None

        for attempt in range(self.max_attempts):
            try:
                return await asyncio.wait_for(operation(), timeout=self.attempt_timeout)
            except asyncio.TimeoutError as e:
                last_error = e
                logger.warning(
                    f"⏰ {description} timed out after {self.attempt_timeout:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_attempts})"
                )
            except CollaboratorError:
                raise
            except self.retry_on as e:
                last_error = e
                logger.warning(f"⚠️  {description} failed (attempt {attempt + 1}/{self.max_attempts}): {e}")

            if attempt < self.max_attempts - 1:
                delay = self.calculate_delay(attempt)
                logger.debug(f"Retrying {description} in {delay:.2f}s")
                await asyncio.sleep(delay)

        logger.error(f"❌ {description} failed after {self.max_attempts} attempts: {last_error}")
        raise CollaboratorError(f"{description} failed after {self.max_attempts} attempts: {last_error}")

    async def run_with_fallback(
        self,
        endpoints: Sequence[str],
        operation_factory: Callable[[str], Awaitable[T]],
        description: str = "operation",
    ) -> T:
        """Try each endpoint in order under this policy; the first success wins"""
        if not endpoints:
            raise CollaboratorError(f"{description}: no endpoints configured")

        errors = []
        for endpoint in endpoints:
            try:
                result = await self.run(
                    lambda: operation_factory(endpoint),
                    description=f"{description} via {endpoint}"
                )
                if endpoint != endpoints[0]:
                    logger.info(f"✅ {description} succeeded on fallback endpoint {endpoint}")
                return result
            except CollaboratorError as e:
                errors.append(f"{endpoint}: {e.message}")
                continue

        raise CollaboratorError(f"All endpoints failed for {description}: {'; '.join(errors)}")
