"""
Shuffle phase: group every emitted value under its key.

The shuffler is the barrier between map and reduce. Groups are only released
once the caller has finished adding emissions, and after that no further
emissions are accepted.
"""

from typing import Any, Dict, Hashable, Iterable, Iterator, List, Tuple


class Shuffler:
    """Collects (key, value) emissions and groups values by key equality"""

    def __init__(self):
        self._groups: Dict[Hashable, List[Any]] = {}
        self._sealed = False
        self.pairs_seen = 0

    def add(self, key: Hashable, value: Any):
        if self._sealed:
            raise RuntimeError("Shuffler already released its groups; no more emissions accepted")
        self._groups.setdefault(key, []).append(value)
        self.pairs_seen += 1

    def extend(self, pairs: Iterable[Tuple[Hashable, Any]]):
        for key, value in pairs:
            self.add(key, value)

    def __len__(self) -> int:
        return len(self._groups)

    def groups(self) -> Iterator[Tuple[Hashable, List[Any]]]:
        """
        Seal the shuffler and yield each key with its values.

        Keys come out sorted for deterministic output, or in first-emitted
        order when they can't be compared with each other (e.g. None next to
        an int). Values keep the order they were added in.
        """
        self._sealed = True
        return ((key, self._groups[key]) for key in self._ordered_keys())

    def release(self) -> Iterator[Tuple[Hashable, List[Any]]]:
        """Like groups(), dropping each group once the consumer moves past it"""
        self._sealed = True
        return ((key, self._groups.pop(key)) for key in self._ordered_keys())

    def _ordered_keys(self) -> List[Hashable]:
        try:
            return sorted(self._groups)
        except TypeError:
            return list(self._groups)
