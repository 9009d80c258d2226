"""Reconnect policy for the verification client.

The retry loop itself is driven by tenacity; this module holds the
backoff schedule it uses and an I/O-free record of the connection
lifecycle that the loop's hooks update.

An opened socket is not proof of progress. The attempt count only goes
back to zero once the server has shown the session is alive, so a server
that accepts and immediately drops connections still runs into the
attempt ceiling.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from tenacity import RetryCallState, wait_exponential

from truth_engine.config.settings import settings


def reconnect_wait(base: float = 1.0, cap: float = 30.0) -> wait_exponential:
    """Tenacity wait strategy: ``base``, ``2 * base``, ``4 * base`` ... up to ``cap``."""
    return wait_exponential(multiplier=base, max=cap)


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 30.0) -> float:
    """
    Delay before reconnect attempt ``attempt``, as the retry loop computes it.

    Args:
        attempt: Zero-based index of the reconnect attempt.
        base: Delay before the first retry.
        cap: Upper bound on any single delay.

    Raises:
        ValueError: If attempt is negative.
    """
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    # tenacity numbers attempts from 1
    retry_state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
    retry_state.attempt_number = attempt + 1
    return float(reconnect_wait(base, cap)(retry_state))


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass(frozen=True)
class ReconnectState:
    """Immutable snapshot of the client's connection lifecycle.

    ``attempts`` counts failed connections since the session was last
    seen alive; ``max_attempts`` is how many reconnects follow a loss
    before the client gives up.
    """

    state: ConnectionState = ConnectionState.CONNECTING
    attempts: int = 0
    max_attempts: int = settings.reconnect_max_attempts
    base_delay: float = settings.reconnect_base_delay
    max_delay: float = settings.reconnect_max_delay
    last_error: Optional[str] = None

    def next_delay(self) -> float:
        """Wait before the reconnect that follows the latest failure."""
        return backoff_delay(max(self.attempts - 1, 0), self.base_delay, self.max_delay)

    def on_connected(self) -> "ReconnectState":
        return replace(self, state=ConnectionState.CONNECTED)

    def on_session_alive(self) -> "ReconnectState":
        return replace(self, state=ConnectionState.CONNECTED, attempts=0, last_error=None)

    def on_attempt_failed(self, reason: str) -> "ReconnectState":
        if self.state == ConnectionState.CLOSED:
            return self
        return replace(
            self,
            state=ConnectionState.RECONNECTING,
            attempts=self.attempts + 1,
            last_error=reason,
        )

    def on_gave_up(self, reason: str) -> "ReconnectState":
        return replace(
            self,
            state=ConnectionState.FAILED,
            attempts=self.attempts + 1,
            last_error=reason,
        )

    def on_closed(self) -> "ReconnectState":
        return replace(self, state=ConnectionState.CLOSED)
