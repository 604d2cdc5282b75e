"""Client-side conversion polling and gallery reconciliation.

The browser gallery (``web/static/app.js``) implements the same state machine;
this module is what the ``convert`` CLI command uses against a running server.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

import httpx


LOGGER = logging.getLogger(__name__)

DEFAULT_INITIAL_DELAY_SECONDS = 2.0
DEFAULT_POLL_PERIOD_SECONDS = 3.0
DEFAULT_MAX_ATTEMPTS = 40


class PollState(str, Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    POLLING = "polling"
    READY = "ready"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


TERMINAL_STATES = frozenset({PollState.READY, PollState.TIMED_OUT, PollState.FAILED})


class GalleryTransport(Protocol):
    """Protocol describing the two server calls the poller needs."""

    def trigger(self, gif_id: str) -> Dict[str, Any]:
        """Ask the server to convert *gif_id*; raise on transport or HTTP failure."""

    def list_gifs(self) -> List[Dict[str, Any]]:
        """Return the ready catalog entries."""


class HttpGalleryTransport:
    """:class:`GalleryTransport` backed by an ``httpx.Client``."""

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ) -> None:
        self._client = client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    def trigger(self, gif_id: str) -> Dict[str, Any]:
        response = self._client.post(f"/convert/{gif_id}")
        response.raise_for_status()
        return response.json()

    def list_gifs(self) -> List[Dict[str, Any]]:
        response = self._client.get("/gifs")
        response.raise_for_status()
        return list(response.json().get("gifs") or [])

    def close(self) -> None:
        self._client.close()


@dataclass
class PollOutcome:
    gif_id: str
    state: PollState
    attempts: int = 0
    mp4_url: Optional[str] = None
    error: Optional[str] = None
    history: List[PollState] = field(default_factory=list)


def reconcile_catalog(
    current_ids: Iterable[str],
    new_entries: Sequence[Mapping[str, Any]],
) -> Tuple[List[Mapping[str, Any]], List[str]]:
    """Return ``(to_add, to_remove)`` turning *current_ids* into *new_entries*.

    ``to_add`` keeps the order of *new_entries*; ``to_remove`` keeps the order
    of *current_ids*. Entries without an ``id`` are ignored.
    """

    current = list(dict.fromkeys(current_ids))
    current_set = set(current)
    incoming: Dict[str, Mapping[str, Any]] = {}
    for entry in new_entries:
        entry_id = entry.get("id")
        if entry_id is None or entry_id in incoming:
            continue
        incoming[str(entry_id)] = entry
    to_add = [entry for entry_id, entry in incoming.items() if entry_id not in current_set]
    to_remove = [entry_id for entry_id in current if entry_id not in incoming]
    return to_add, to_remove


class ConversionPoller:
    """Trigger one conversion and poll the catalog until it is ready.

    ``idle -> requested -> polling -> ready | timed_out | failed``; a trigger
    response that already carries ``mp4Url`` goes straight to ``ready``.
    """

    def __init__(
        self,
        transport: GalleryTransport,
        *,
        initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS,
        period: float = DEFAULT_POLL_PERIOD_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
        on_transition: Optional[Callable[[PollState, PollOutcome], None]] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._transport = transport
        self._initial_delay = initial_delay
        self._period = period
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._on_transition = on_transition

    def _move(self, outcome: PollOutcome, state: PollState) -> None:
        outcome.state = state
        outcome.history.append(state)
        LOGGER.debug("Poll for %s -> %s", outcome.gif_id, state.value)
        if self._on_transition is not None:
            self._on_transition(state, outcome)

    def run(self, gif_id: str) -> PollOutcome:
        outcome = PollOutcome(gif_id=gif_id, state=PollState.IDLE, history=[PollState.IDLE])

        self._move(outcome, PollState.REQUESTED)
        try:
            response = self._transport.trigger(gif_id)
        except (httpx.HTTPError, ValueError) as error:
            outcome.error = str(error) or "Conversion request failed"
            self._move(outcome, PollState.FAILED)
            return outcome

        if not response.get("success", False):
            outcome.error = str(response.get("error") or "Conversion request failed")
            self._move(outcome, PollState.FAILED)
            return outcome

        if response.get("mp4Url"):
            outcome.mp4_url = response["mp4Url"]
            self._move(outcome, PollState.READY)
            return outcome

        self._sleep(self._initial_delay)
        self._move(outcome, PollState.POLLING)

        while outcome.attempts < self._max_attempts:
            outcome.attempts += 1
            try:
                entries = self._transport.list_gifs()
            except (httpx.HTTPError, ValueError) as error:
                LOGGER.warning("Poll attempt %s for %s failed: %s", outcome.attempts, gif_id, error)
                entries = []
            match = next(
                (entry for entry in entries if entry.get("id") == gif_id and entry.get("mp4Available")),
                None,
            )
            if match is not None:
                outcome.mp4_url = match.get("mp4Url")
                self._move(outcome, PollState.READY)
                return outcome
            if outcome.attempts < self._max_attempts:
                self._sleep(self._period)

        outcome.error = f"MP4 not ready after {outcome.attempts} attempts"
        self._move(outcome, PollState.TIMED_OUT)
        return outcome


__all__ = [
    "ConversionPoller",
    "GalleryTransport",
    "HttpGalleryTransport",
    "PollOutcome",
    "PollState",
    "TERMINAL_STATES",
    "reconcile_catalog",
]
