"""
Bounded wait-until-condition primitive.

One poller serves every readiness check (nodes ready, rollout complete, load
balancer hostname assigned, HTTP 200); each check supplies its own predicate.
Transient predicate errors count as "not yet"; permanent ones end the poll on
the spot instead of burning the whole timeout.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from kudos_deploy.errors import DeploymentError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckResult:
    """What a predicate saw on one invocation."""
    satisfied: bool
    observation: Any = None


@dataclass(frozen=True)
class PollResult:
    satisfied: bool
    last_observation: Any
    attempts: int
    elapsed: float
    error: Optional[DeploymentError] = None

    @property
    def short_circuited(self) -> bool:
        return self.error is not None


Predicate = Callable[[], Union[CheckResult, bool]]


class ReadinessPoller:
    """Calls a predicate immediately, then every interval, until satisfied or timed out."""

    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 sleep: Optional[Callable[[float], None]] = None,
                 cancel_token=None):
        self.clock = clock
        self.cancel_token = cancel_token
        if sleep is not None:
            self._sleep = sleep
        elif cancel_token is not None:
            self._sleep = cancel_token.wait
        else:
            self._sleep = time.sleep

    def poll(self, predicate: Predicate, timeout: float, interval: float,
             description: str = "condition", backoff: float = 1.0,
             max_interval: Optional[float] = None) -> PollResult:
        """Wait for ``predicate`` to report satisfied.

        Args:
            predicate: Returns CheckResult (or bool); may raise DeploymentError
            timeout: Give up once this many seconds have elapsed
            interval: Delay between invocations
            description: Used in log lines
            backoff: Multiplier applied to the interval after every miss
            max_interval: Upper bound for the grown interval

        Returns:
            PollResult. Never raises for predicate failures; raises RunCancelled
            when the cancellation token fires.
        """
        if timeout < 0 or interval <= 0:
            raise ValueError("timeout must be >= 0 and interval > 0")

        start = self.clock()
        attempts = 0
        last_observation = None
        current_interval = interval

        while True:
            if self.cancel_token is not None:
                self.cancel_token.raise_if_cancelled()

            attempts += 1
            try:
                result = predicate()
                if not isinstance(result, CheckResult):
                    result = CheckResult(bool(result), result)
            except DeploymentError as e:
                if not e.transient:
                    elapsed = self.clock() - start
                    logger.error(f"❌ {description}: permanent error on attempt {attempts}: {e}")
                    return PollResult(False, last_observation, attempts, elapsed, error=e)
                logger.debug(f"{description}: transient error on attempt {attempts}: {e}")
                result = CheckResult(False, str(e))

            last_observation = result.observation
            elapsed = self.clock() - start

            if result.satisfied:
                logger.info(f"✅ {description} satisfied after {attempts} attempt(s) in {elapsed:.1f}s")
                return PollResult(True, last_observation, attempts, elapsed)

            if elapsed >= timeout:
                logger.warning(f"⏳ {description} not satisfied after {attempts} attempt(s) "
                               f"({elapsed:.1f}s >= {timeout:.1f}s)")
                return PollResult(False, last_observation, attempts, elapsed)

            wait = min(current_interval, timeout - elapsed)
            logger.info(f"   Waiting for {description}... (attempt {attempts}, {elapsed:.0f}s/{timeout:.0f}s)")
            self._sleep(wait)

            if backoff != 1.0:
                current_interval = current_interval * backoff
                if max_interval is not None:
                    current_interval = min(current_interval, max_interval)
