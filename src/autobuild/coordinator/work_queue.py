"""Ordered backlog of issue ids with no duplicates."""

from __future__ import annotations

from collections.abc import Iterable, Iterator


class WorkQueue:
    """FIFO of issue ids; the head is the next item the loop works on.

    Mutators return whether anything changed so callers can decide
    whether a snapshot needs persisting.
    """

    def __init__(self, items: Iterable[str] = ()) -> None:
        self._items: list[str] = []
        for item in items:
            self.enqueue(item)

    def enqueue(self, issue_id: str) -> bool:
        if issue_id in self._items:
            return False
        self._items.append(issue_id)
        return True

    def push_front(self, issue_id: str) -> None:
        if issue_id in self._items:
            self._items.remove(issue_id)
        self._items.insert(0, issue_id)

    def dequeue(self, issue_id: str) -> bool:
        if issue_id not in self._items:
            return False
        self._items.remove(issue_id)
        return True

    def reorder(self, from_index: int, to_index: int) -> None:
        size = len(self._items)
        if not (0 <= from_index < size and 0 <= to_index < size):
            raise IndexError(f"reorder({from_index}, {to_index}) out of range for queue of {size}")
        item = self._items.pop(from_index)
        self._items.insert(to_index, item)

    def clear(self) -> None:
        self._items.clear()

    def replace(self, items: Iterable[str]) -> None:
        self._items.clear()
        for item in items:
            self.enqueue(item)

    @property
    def head(self) -> str | None:
        return self._items[0] if self._items else None

    def to_list(self) -> list[str]:
        return list(self._items)

    def __contains__(self, issue_id: object) -> bool:
        return issue_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._items))

    def __bool__(self) -> bool:
        return bool(self._items)
