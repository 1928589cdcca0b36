"""
Cooldown countdowns, one per session.

A cooldown starts when a decision carries cooldownSeconds and ticks down once per
COOLDOWN_TICK_SEC on its own daemon thread. When it reaches 0 the session is idle
again. The only way to end one early is abandon(), which is logged. Starting a new
cooldown for a session cancels the previous one.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CooldownState:
    session_id: str
    active: bool
    remaining_seconds: int
    total_seconds: int

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "active": self.active,
            "remainingSeconds": self.remaining_seconds,
            "totalSeconds": self.total_seconds,
        }


def idle_state(session_id: str) -> CooldownState:
    return CooldownState(session_id=session_id, active=False, remaining_seconds=0, total_seconds=0)


class _Countdown:
    def __init__(self, state: CooldownState):
        self.state = state
        self.cancelled = threading.Event()
        self.thread: Optional[threading.Thread] = None


class CooldownEnforcer:
    """
    Thread-safe registry of running countdowns.

    Usage:
        enforcer = CooldownEnforcer()
        enforcer.start("default", 120)
        enforcer.get_state("default").remaining_seconds
    """

    def __init__(self, tick_seconds: Optional[float] = None):
        self._tick = float(tick_seconds if tick_seconds is not None else config.COOLDOWN_TICK_SEC)
        self._lock = threading.Lock()
        self._countdowns: Dict[str, _Countdown] = {}

    def start(self, session_id: str, seconds: int) -> CooldownState:
        """Start a countdown, replacing any running one for this session."""
        seconds = int(seconds)
        if seconds <= 0:
            raise ValueError("cooldown seconds must be positive")
        countdown = _Countdown(CooldownState(session_id, True, seconds, seconds))
        with self._lock:
            previous = self._countdowns.get(session_id)
            if previous is not None:
                previous.cancelled.set()
            self._countdowns[session_id] = countdown
        countdown.thread = threading.Thread(
            target=self._run, args=(session_id, countdown), name=f"cooldown-{session_id}", daemon=True
        )
        countdown.thread.start()
        logger.info("Cooldown started for session %s: %ss", session_id, seconds)
        return countdown.state

    def _run(self, session_id: str, countdown: _Countdown) -> None:
        while not countdown.cancelled.wait(self._tick):
            with self._lock:
                if countdown.cancelled.is_set():
                    return
                remaining = countdown.state.remaining_seconds - 1
                if remaining <= 0:
                    if self._countdowns.get(session_id) is countdown:
                        del self._countdowns[session_id]
                    countdown.state = replace(countdown.state, active=False, remaining_seconds=0)
                    logger.info("Cooldown finished for session %s", session_id)
                    return
                countdown.state = replace(countdown.state, remaining_seconds=remaining)

    def abandon(self, session_id: str) -> bool:
        """Cancel the session's countdown. Returns False when none was running."""
        with self._lock:
            countdown = self._countdowns.pop(session_id, None)
            if countdown is None:
                return False
            countdown.cancelled.set()
            remaining = countdown.state.remaining_seconds
        logger.warning("Cooldown abandoned for session %s with %ss remaining", session_id, remaining)
        return True

    def get_state(self, session_id: str) -> CooldownState:
        with self._lock:
            countdown = self._countdowns.get(session_id)
            if countdown is None:
                return idle_state(session_id)
            return countdown.state

    def is_active(self, session_id: str) -> bool:
        return self.get_state(session_id).active

    def active_states(self) -> List[CooldownState]:
        """States of every running countdown."""
        with self._lock:
            return [c.state for c in self._countdowns.values()]

    def shutdown(self) -> None:
        """Cancel all countdowns (tests and process exit)."""
        with self._lock:
            for countdown in self._countdowns.values():
                countdown.cancelled.set()
            self._countdowns.clear()


_enforcer: Optional[CooldownEnforcer] = None
_enforcer_lock = threading.Lock()


def get_enforcer() -> CooldownEnforcer:
    """Process-wide enforcer used by the HTTP layer."""
    global _enforcer
    with _enforcer_lock:
        if _enforcer is None:
            _enforcer = CooldownEnforcer()
        return _enforcer
