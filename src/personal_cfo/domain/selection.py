from collections.abc import Iterable, Iterator


class SelectionSet:
    """Ordered set of selected ids, as kept by list views with checkboxes."""

    def __init__(self, ids: Iterable[str] | None = None) -> None:
        self._ids: dict[str, None] = dict.fromkeys(ids or [])

    def __contains__(self, item: object) -> bool:
        return item in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self) -> str:
        return f"SelectionSet({list(self._ids)!r})"

    def toggle(self, item_id: str, checked: bool) -> None:
        if checked:
            self._ids[item_id] = None
        else:
            self._ids.pop(item_id, None)

    def select_all(self, ids: Iterable[str]) -> None:
        for item_id in ids:
            self._ids[item_id] = None

    def clear(self) -> None:
        self._ids.clear()

    def discard_many(self, ids: Iterable[str]) -> None:
        for item_id in ids:
            self._ids.pop(item_id, None)

    def retain(self, available: Iterable[str]) -> None:
        """Drop ids that no longer exist in the listing."""
        keep = set(available)
        self._ids = {item_id: None for item_id in self._ids if item_id in keep}

    def as_list(self) -> list[str]:
        return list(self._ids)
