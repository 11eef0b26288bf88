from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable

LOGGER = logging.getLogger(__name__)


class TurnState(str, enum.Enum):
    IDLE = "idle"
    RESPONSE_IN_FLIGHT = "response_in_flight"


class TurnCoordinator:
    """Tracks whether a speech-service response is in flight.

    Caller audio may only be submitted while IDLE. Submitting moves the turn to
    RESPONSE_IN_FLIGHT; the remote completion or error event moves it back.
    The first-response trigger is a one-shot per session.
    """

    def __init__(
        self,
        *,
        first_response_policy: str = "greet_first",
        response_timeout_s: float = 0.0,
        session_id: str = "-",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.state = TurnState.IDLE
        self.first_response_policy = first_response_policy
        self._first_response_sent = False
        self._response_timeout_s = response_timeout_s
        self._in_flight_since: float | None = None
        self._session_id = session_id
        self._clock = clock

    @property
    def first_response_sent(self) -> bool:
        return self._first_response_sent

    def can_submit(self) -> bool:
        if self.state is TurnState.RESPONSE_IN_FLIGHT and self._watchdog_expired():
            LOGGER.warning(
                "[%s] response in flight for more than %.1fs; forcing turn back to idle",
                self._session_id,
                self._response_timeout_s,
            )
            self._transition(TurnState.IDLE, "watchdog")
        return self.state is TurnState.IDLE

    def begin_response(self) -> bool:
        """Record a local submission + response request. False when suppressed."""

        if not self.can_submit():
            return False
        self._transition(TurnState.RESPONSE_IN_FLIGHT, "local submit")
        return True

    def claim_first_response(self, trigger: str) -> bool:
        """Consume the one-shot first-response trigger.

        `trigger` is "connect" or "submit"; only the one matching the configured
        policy can claim it, and only once.
        """

        if self._first_response_sent:
            return False
        expected = "connect" if self.first_response_policy == "greet_first" else "submit"
        if trigger != expected:
            return False
        self._first_response_sent = True
        LOGGER.info("[%s] first response triggered on %s", self._session_id, trigger)
        return True

    def on_response_created(self) -> None:
        # The remote side may start a response on its own; treat it as in flight.
        if self.state is TurnState.IDLE:
            self._transition(TurnState.RESPONSE_IN_FLIGHT, "response.created")

    def on_response_completed(self) -> None:
        self._transition(TurnState.IDLE, "response completed")

    def on_response_error(self) -> None:
        self._transition(TurnState.IDLE, "response error")

    def _watchdog_expired(self) -> bool:
        if self._response_timeout_s <= 0 or self._in_flight_since is None:
            return False
        return self._clock() - self._in_flight_since > self._response_timeout_s

    def _transition(self, new_state: TurnState, reason: str) -> None:
        if new_state is self.state:
            return
        LOGGER.info("[%s] turn %s -> %s (%s)", self._session_id, self.state.value, new_state.value, reason)
        self.state = new_state
        self._in_flight_since = self._clock() if new_state is TurnState.RESPONSE_IN_FLIGHT else None
