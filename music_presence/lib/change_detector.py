"""
Change detection for presence updates.

Data is only sent to Discord when something changes.  Two lanes are tracked
independently: local playback (track, artist, album) and station streaming
(station, track, artist, album).  A fingerprint is committed only after a
successful send, so an observation that was never sent cannot suppress a
later identical send.  Committing on one lane clears the other, so returning
to a lane always counts as new.
"""

import json
import logging
from enum import Enum

logger = logging.getLogger(__name__)

EMPTY = ""


class Lane(Enum):
    LOCAL = "local"
    STATION = "station"

    @property
    def other(self) -> "Lane":
        return Lane.STATION if self is Lane.LOCAL else Lane.LOCAL


def fingerprint(fields) -> str:
    return json.dumps(list(fields), ensure_ascii=False)


def changed(fields, previous: str) -> tuple[bool, str]:
    """Compare *fields* against the *previous* fingerprint.

    Returns ``(is_changed, new_fingerprint)``.  No side effects.
    """
    current = fingerprint(fields)
    return current != previous, current


class ChangeDetector:
    """Holds the last-sent fingerprint for each lane."""

    def __init__(self):
        self._sent: dict[Lane, str] = {lane: EMPTY for lane in Lane}

    def previous(self, lane: Lane) -> str:
        return self._sent[lane]

    def check(self, lane: Lane, *fields) -> tuple[bool, str]:
        return changed(fields, self._sent[lane])

    def commit(self, lane: Lane, new_fingerprint: str):
        """Record a successful send on *lane* and clear the other lane."""
        self._sent[lane] = new_fingerprint
        if self._sent[lane.other] != EMPTY:
            logger.debug("Switched to %s lane, clearing %s fingerprint",
                         lane.value, lane.other.value)
        self._sent[lane.other] = EMPTY

    def reset(self):
        self._sent = {lane: EMPTY for lane in Lane}
