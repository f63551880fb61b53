"""In-memory client stores for one board.

Each store is the client's authoritative cache for one entity type. Every
mutation names its ``UpdateSource`` and goes through ``should_replace``, so
optimistic edits, REST responses and push events converge regardless of the
order they arrive in.

The four stores of a board share a ``ChangeBus``: listeners hear about a
change once per effective mutation, or once per ``batch()`` so a multi-entity
event is never observed half-applied.
"""

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from feedboard.client.policy import UpdateSource, should_replace
from feedboard.models.enums import TimeMode
from feedboard.schemas import (
    AMOUNT_FIELDS,
    BoardResponse,
    BoardSnapshot,
    DietEntryResponse,
    FeedResponse,
    HorseResponse,
)
from feedboard.timemode import get_effective_time_mode

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)
Listener = Callable[[frozenset[str]], None]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ChangeBus:
    """Change notification shared by the stores of one board."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._depth = 0
        self._pending: set[str] = set()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def batching(self) -> bool:
        return self._depth > 0

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Defer notifications until the outermost batch exits."""
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
            if self._depth == 0 and self._pending:
                changed = frozenset(self._pending)
                self._pending.clear()
                self._emit(changed)

    def mark_changed(self, name: str) -> None:
        if self._depth:
            self._pending.add(name)
            return
        self._emit(frozenset({name}))

    def _emit(self, changed: frozenset[str]) -> None:
        for listener in list(self._listeners):
            listener(changed)


class CollectionStore(Generic[T]):
    """Keyed collection of one entity type with source-aware arbitration."""

    def __init__(self, name: str, *, bus: ChangeBus | None = None, clock: Clock = _utcnow):
        self.name = name
        self.version = 0
        self._bus = bus or ChangeBus()
        self._clock = clock
        self._items: dict[str, T] = {}

    def key_of(self, item: T) -> str:
        return item.id  # type: ignore[attr-defined]

    @property
    def items(self) -> list[T]:
        return list(self._items.values())

    @property
    def ids(self) -> list[str]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def get(self, key: str) -> T | None:
        return self._items.get(key)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self._bus.subscribe(listener)

    def _changed(self) -> None:
        self.version += 1
        self._bus.mark_changed(self.name)

    def _accepts(self, existing: T | None, incoming: T, source: UpdateSource) -> bool:
        if should_replace(existing, incoming, source):
            return True
        # Losing the race is normal; the newer value is already here.
        logger.debug(
            f"{self.name}: kept {self.key_of(incoming)} at {existing.updated_at}, "  # type: ignore[union-attr]
            f"ignored {source} write from {incoming.updated_at}"  # type: ignore[attr-defined]
        )
        return False

    def _store(self, key: str, existing: T | None, incoming: T, source: UpdateSource) -> bool:
        if not self._accepts(existing, incoming, source):
            return False
        if existing == incoming:
            return False
        self._items[key] = incoming
        self._changed()
        return True

    def set(self, items: Iterable[T], source: UpdateSource = UpdateSource.LOCAL) -> bool:
        """Replace the whole collection.

        Ids missing from ``items`` are dropped. For non-push sources an item
        older than the stored one keeps the stored value.
        """
        merged: dict[str, T] = {}
        for item in items:
            key = self.key_of(item)
            existing = self._items.get(key)
            merged[key] = item if self._accepts(existing, item, source) else existing  # type: ignore[assignment]
        if merged == self._items:
            return False
        self._items = merged
        self._changed()
        return True

    def add(self, item: T, source: UpdateSource = UpdateSource.LOCAL) -> bool:
        """Insert an item; an existing id is treated as an upsert."""
        return self.upsert(item, source)

    def upsert(self, item: T, source: UpdateSource = UpdateSource.LOCAL) -> bool:
        key = self.key_of(item)
        return self._store(key, self._items.get(key), item, source)

    def update(
        self,
        key: str,
        partial: Mapping[str, Any],
        source: UpdateSource = UpdateSource.LOCAL,
    ) -> bool:
        """Merge ``partial`` into an existing item.

        Unknown ids are ignored. Without an ``updated_at`` in ``partial`` the
        write is stamped with the current time.
        """
        existing = self._items.get(key)
        if existing is None:
            logger.debug(f"{self.name}: update for unknown id {key} ignored")
            return False
        changes = dict(partial)
        changes.setdefault("updated_at", self._clock())
        return self._store(key, existing, existing.model_copy(update=changes), source)

    def remove(self, key: str, source: UpdateSource = UpdateSource.LOCAL) -> bool:
        if key not in self._items:
            return False
        del self._items[key]
        self._changed()
        return True

    def reconcile(self, items: Iterable[T], source: UpdateSource) -> bool:
        """Apply a batch of items.

        A push batch is the complete authoritative set: anything held locally
        but absent from it is deleted. Other sources merge; unlisted ids stay.
        """
        merged = dict(self._items)
        seen: set[str] = set()
        changed = False
        for item in items:
            key = self.key_of(item)
            seen.add(key)
            existing = merged.get(key)
            if existing != item and self._accepts(existing, item, source):
                merged[key] = item
                changed = True
        if source == UpdateSource.PUSH:
            for key in [k for k in merged if k not in seen]:
                del merged[key]
                changed = True
        if not changed:
            return False
        self._items = merged
        self._changed()
        return True

    def clear(self) -> None:
        if self._items:
            self._items = {}
            self._changed()


class HorseStore(CollectionStore[HorseResponse]):
    """Horses with search and archive filtering."""

    def __init__(self, *, bus: ChangeBus | None = None, clock: Clock = _utcnow):
        super().__init__("horses", bus=bus, clock=clock)

    def active(self) -> list[HorseResponse]:
        return [h for h in self._items.values() if not h.archived]

    def search(self, query: str) -> list[HorseResponse]:
        needle = query.lower().strip()
        if not needle:
            return self.items
        return [h for h in self._items.values() if needle in h.name.lower()]


class FeedStore(CollectionStore[FeedResponse]):
    """Feeds with rank ordering."""

    def __init__(self, *, bus: ChangeBus | None = None, clock: Clock = _utcnow):
        super().__init__("feeds", bus=bus, clock=clock)

    def by_rank(self) -> list[FeedResponse]:
        """Most used first; unranked (rank 0) feeds last."""
        return sorted(self._items.values(), key=lambda f: (f.rank <= 0, f.rank, f.name.lower()))


class DietStore(CollectionStore[DietEntryResponse]):
    """Diet entries keyed by ``horse_id:feed_id``."""

    def __init__(self, *, bus: ChangeBus | None = None, clock: Clock = _utcnow):
        super().__init__("diet", bus=bus, clock=clock)

    @staticmethod
    def entry_key(horse_id: str, feed_id: str) -> str:
        return f"{horse_id}:{feed_id}"

    def key_of(self, item: DietEntryResponse) -> str:
        return self.entry_key(item.horse_id, item.feed_id)

    def get_entry(self, horse_id: str, feed_id: str) -> DietEntryResponse | None:
        return self._items.get(self.entry_key(horse_id, feed_id))

    def by_horse(self, horse_id: str) -> list[DietEntryResponse]:
        return [e for e in self._items.values() if e.horse_id == horse_id]

    def by_feed(self, feed_id: str) -> list[DietEntryResponse]:
        return [e for e in self._items.values() if e.feed_id == feed_id]

    def update_amount(
        self,
        horse_id: str,
        feed_id: str,
        field: str,
        value: float | None,
        source: UpdateSource = UpdateSource.LOCAL,
    ) -> bool:
        """Write one of ``am_amount``/``pm_amount``, leaving the other untouched.

        Creates the entry on its first non-null amount and removes it once
        both amounts are null.
        """
        if field not in AMOUNT_FIELDS:
            raise ValueError(f"Unknown diet amount field: {field}")

        key = self.entry_key(horse_id, feed_id)
        existing = self._items.get(key)
        now = self._clock()

        if existing is None:
            if value is None:
                return False
            entry = DietEntryResponse(
                horse_id=horse_id,
                feed_id=feed_id,
                created_at=now,
                updated_at=now,
                **{field: value},
            )
            return self._store(key, None, entry, source)

        candidate = DietEntryResponse.model_validate(
            {**existing.model_dump(), field: value, "updated_at": now}
        )
        if candidate.am_amount is None and candidate.pm_amount is None:
            if not self._accepts(existing, candidate, source):
                return False
            return self.remove(key, source)
        return self._store(key, existing, candidate, source)

    def remove_entry(
        self, horse_id: str, feed_id: str, source: UpdateSource = UpdateSource.LOCAL
    ) -> bool:
        return self.remove(self.entry_key(horse_id, feed_id), source)

    def count_active_feeds(self, horse_id: str) -> int:
        """Distinct feeds with at least one non-null, non-zero amount."""
        return len({e.feed_id for e in self.by_horse(horse_id) if e.is_active})


class BoardStore:
    """Holds the single board entity of this client."""

    name = "board"

    def __init__(self, *, bus: ChangeBus | None = None, clock: Clock = _utcnow):
        self.version = 0
        self._bus = bus or ChangeBus()
        self._clock = clock
        self._board: BoardResponse | None = None

    @property
    def board(self) -> BoardResponse | None:
        return self._board

    @property
    def configured_mode(self) -> TimeMode:
        return self._board.time_mode if self._board else TimeMode.AUTO

    @property
    def timezone(self) -> str:
        return self._board.timezone if self._board else "UTC"

    @property
    def override_until(self) -> datetime | None:
        return self._board.override_until if self._board else None

    @property
    def zoom_level(self) -> int:
        return self._board.zoom_level if self._board else 2

    @property
    def current_page(self) -> int:
        return self._board.current_page if self._board else 0

    def effective_time_mode(self, now: datetime | None = None) -> TimeMode:
        return get_effective_time_mode(
            self.configured_mode, self.override_until, self.timezone, now or self._clock()
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self._bus.subscribe(listener)

    def _changed(self) -> None:
        self.version += 1
        self._bus.mark_changed(self.name)

    def set(self, board: BoardResponse, source: UpdateSource = UpdateSource.LOCAL) -> bool:
        if not should_replace(self._board, board, source):
            logger.debug(
                f"board: kept {board.id} at {self._board.updated_at}, "  # type: ignore[union-attr]
                f"ignored {source} write from {board.updated_at}"
            )
            return False
        if board == self._board:
            return False
        self._board = board
        self._changed()
        return True

    def update(
        self, partial: Mapping[str, Any], source: UpdateSource = UpdateSource.LOCAL
    ) -> bool:
        if self._board is None:
            return False
        changes = dict(partial)
        changes.setdefault("updated_at", self._clock())
        return self.set(self._board.model_copy(update=changes), source)

    def clear(self) -> None:
        if self._board is not None:
            self._board = None
            self._changed()

    def update_time_mode(
        self, mode: TimeMode | str, override_until: datetime | None = None
    ) -> bool:
        """Optimistically apply a time-mode change."""
        mode = TimeMode(mode)
        return self.update(
            {"time_mode": mode, "override_until": override_until if mode.is_override() else None}
        )

    def set_zoom_level(self, level: int) -> bool:
        if level not in (1, 2, 3):
            raise ValueError(f"zoom level must be 1, 2 or 3, got {level}")
        return self.update({"zoom_level": level})

    def set_current_page(self, page: int) -> bool:
        if page < 0:
            raise ValueError(f"page must not be negative, got {page}")
        return self.update({"current_page": page})


class BoardState:
    """The four stores of one board, sharing one change bus."""

    def __init__(self, clock: Clock = _utcnow) -> None:
        self.bus = ChangeBus()
        self.board = BoardStore(bus=self.bus, clock=clock)
        self.horses = HorseStore(bus=self.bus, clock=clock)
        self.feeds = FeedStore(bus=self.bus, clock=clock)
        self.diet = DietStore(bus=self.bus, clock=clock)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.bus.subscribe(listener)

    def batch(self) -> Any:
        return self.bus.batch()

    def apply_snapshot(self, snapshot: BoardSnapshot, source: UpdateSource) -> None:
        """Apply a complete snapshot as one batch.

        From push, anything the snapshot does not list is deleted; from other
        sources the snapshot is merged.
        """
        with self.batch():
            self.board.set(snapshot.board, source)
            self.horses.reconcile(snapshot.horses, source)
            self.feeds.reconcile(snapshot.feeds, source)
            self.diet.reconcile(snapshot.diet_entries, source)

    def to_snapshot(self) -> BoardSnapshot | None:
        if self.board.board is None:
            return None
        return BoardSnapshot(
            board=self.board.board,
            horses=self.horses.items,
            feeds=self.feeds.items,
            diet_entries=self.diet.items,
        )

    def clear(self) -> None:
        with self.batch():
            self.board.clear()
            self.horses.clear()
            self.feeds.clear()
            self.diet.clear()
