from __future__ import annotations

from typing import Any, Dict, Iterator, List

from .models import BOMEntry


class BOMLedger:
    """Append-only bill of materials; order of appending is preserved."""

    def __init__(self) -> None:
        self._entries: List[BOMEntry] = []

    def add(self, entry: BOMEntry) -> None:
        self._entries.append(entry)

    def __iter__(self) -> Iterator[BOMEntry]:
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> List[BOMEntry]:
        return list(self._entries)

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]
