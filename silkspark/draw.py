"""Seeded draw engine: daily single-card and three-card spread sessions.

A session's seed fixes everything: the face-down display deck the user picks
from, the card behind each display slot and its orientation. Resolution is a
pure function of ``(seed, display_index)``, so a re-render or an out-of-order
selection always reveals the same card.
"""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel

from silkspark.deck import Card, card_count, get_card_by_index
from silkspark.utils.rng import check_seed, coin, make_seed, permutation

log = logging.getLogger("silkspark.draw")

# Reversal rate used by the reading flows (traditional decks sit around a third).
REVERSED_PROBABILITY = 0.35

DAILY_DISPLAY_COUNT = 7
SPREAD_DISPLAY_COUNT = 9

ANONYMOUS_ID = "anonymous"

SessionKind = Literal["daily", "spread"]
Position = Literal["past", "present", "future", "single"]

SPREAD_POSITIONS: Tuple[Position, ...] = ("past", "present", "future")


class DrawError(ValueError):
    pass


class InvalidSelectionError(DrawError):
    pass


class DuplicateSelectionError(DrawError):
    pass


class SessionExpiredError(DrawError):
    pass


class Draw(BaseModel):
    card: Card
    is_reversed: bool
    position: Optional[Position] = None
    display_index: int
    catalog_index: int

    model_config = {"frozen": True}


@dataclass(frozen=True)
class DrawSession:
    session_id: str
    kind: SessionKind
    seed: str
    display_deck: Tuple[int, ...]

    @property
    def selections_required(self) -> int:
        return 1 if self.kind == "daily" else len(SPREAD_POSITIONS)


def _user_key(user_id: Optional[str]) -> str:
    return user_id or ANONYMOUS_ID


def daily_seed(user_id: Optional[str], on: date) -> str:
    """Same user + same calendar day always reproduces the same seed."""
    return make_seed("daily", _user_key(user_id), on.isoformat())


def spread_seed(user_id: Optional[str], nonce: str) -> str:
    return make_seed("spread", _user_key(user_id), nonce)


def display_deck(seed: str, count: int) -> Tuple[int, ...]:
    """Prefix of the seeded permutation; degrades to the catalog size."""
    if count < 1:
        raise InvalidSelectionError(f"Display count must be positive, got {count}")
    order = permutation(check_seed(seed), card_count())
    return tuple(order[: min(count, len(order))])


def init_session(kind: SessionKind, seed: str, count: Optional[int] = None) -> DrawSession:
    if count is None:
        count = DAILY_DISPLAY_COUNT if kind == "daily" else SPREAD_DISPLAY_COUNT
    deck = display_deck(seed, count)
    return DrawSession(session_id=f"{kind}-{seed[:24]}", kind=kind, seed=seed, display_deck=deck)


def start_daily_draw(user_id: Optional[str] = None, on: Optional[date] = None) -> DrawSession:
    on = on or datetime.now(timezone.utc).date()
    return init_session("daily", daily_seed(user_id, on))


def start_spread_draw(user_id: Optional[str] = None, nonce: Optional[str] = None) -> DrawSession:
    nonce = nonce or secrets.token_urlsafe(16)
    return init_session("spread", spread_seed(user_id, nonce))


def resolve_selection(
    seed: str,
    display_index: int,
    display_count: Optional[int] = None,
    position: Optional[Position] = None,
) -> Draw:
    """Map one display slot to its catalog card and orientation.

    Pure: depends on ``seed`` and ``display_index`` only, never on the order
    or number of earlier resolutions.
    """
    check_seed(seed)
    total = card_count()
    limit = total if display_count is None else min(display_count, total)
    if isinstance(display_index, bool) or not isinstance(display_index, int):
        raise InvalidSelectionError(f"Display index must be an int, got {display_index!r}")
    if display_index < 0 or display_index >= limit:
        raise InvalidSelectionError(f"Display index {display_index} outside [0, {limit})")

    catalog_index = permutation(seed, total)[display_index]
    return Draw(
        card=get_card_by_index(catalog_index),
        is_reversed=coin(seed, REVERSED_PROBABILITY, "reversed", catalog_index),
        position=position,
        display_index=display_index,
        catalog_index=catalog_index,
    )


def resolve_spread(
    seed: str,
    display_indices: Sequence[int],
    display_count: Optional[int] = None,
) -> List[Draw]:
    """Resolve three selections; positions follow selection order, not display order."""
    if len(display_indices) != len(SPREAD_POSITIONS):
        raise InvalidSelectionError(
            f"A spread needs exactly {len(SPREAD_POSITIONS)} selections, got {len(display_indices)}"
        )
    if len(set(display_indices)) != len(display_indices):
        raise DuplicateSelectionError(f"Duplicate display indices: {list(display_indices)}")
    return [
        resolve_selection(seed, idx, display_count, position)
        for idx, position in zip(display_indices, SPREAD_POSITIONS)
    ]


class DrawSessions:
    """In-memory registry of the live session per identity.

    Starting a session supersedes the identity's previous one. A session is
    dropped once all of its selections are resolved.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current: Dict[str, str] = {}
        self._sessions: Dict[str, DrawSession] = {}
        self._consumed: Dict[str, List[int]] = {}

    def _register(self, user_id: Optional[str], session: DrawSession) -> DrawSession:
        key = _user_key(user_id)
        with self._lock:
            previous = self._current.get(key)
            if previous is not None:
                self._sessions.pop(previous, None)
                self._consumed.pop(previous, None)
            self._current[key] = session.session_id
            self._sessions[session.session_id] = session
            self._consumed[session.session_id] = []
        log.debug("started %s session %s for %s", session.kind, session.session_id, key)
        return session

    def start_daily(self, user_id: Optional[str] = None, on: Optional[date] = None) -> DrawSession:
        return self._register(user_id, start_daily_draw(user_id, on))

    def start_spread(self, user_id: Optional[str] = None, nonce: Optional[str] = None) -> DrawSession:
        return self._register(user_id, start_spread_draw(user_id, nonce))

    def get(self, session_id: str) -> DrawSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionExpiredError(f"Unknown or superseded session: {session_id}")
        return session

    def consumed(self, session_id: str) -> List[int]:
        with self._lock:
            return list(self._consumed.get(session_id, []))

    def select(self, session_id: str, display_index: int) -> Draw:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionExpiredError(f"Unknown or superseded session: {session_id}")
            consumed = self._consumed[session_id]
            if display_index in consumed:
                raise DuplicateSelectionError(
                    f"Display index {display_index} already selected in session {session_id}"
                )
            position: Position = "single" if session.kind == "daily" else SPREAD_POSITIONS[len(consumed)]
            draw = resolve_selection(session.seed, display_index, len(session.display_deck), position)
            consumed.append(display_index)
            if len(consumed) >= session.selections_required:
                self._sessions.pop(session_id, None)
                self._consumed.pop(session_id, None)
                for key, sid in list(self._current.items()):
                    if sid == session_id:
                        del self._current[key]
        return draw
