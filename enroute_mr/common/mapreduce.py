"""
Map and reduce capability interfaces

Any job supplies one Mapper and one Reducer; every backend drives them
through the same two methods.
"""

from abc import ABC, abstractmethod
from typing import Any, Hashable, List, Optional, Tuple

Emission = Tuple[Hashable, Any]


class Mapper(ABC):
    """Turns one input record into at most one (key, value) pair"""

    @abstractmethod
    def map(self, record) -> Optional[Emission]:
        """
        Map phase for one record

        Returns:
            (key, value) tuple, or None when the record contributes nothing
        """


class Reducer(ABC):
    """Turns all values of one key into one aggregate record"""

    @abstractmethod
    def reduce(self, key: Hashable, values: List[Any]):
        """
        Reduce phase for one key

        Args:
            key: Key shared by every value
            values: All values emitted for key, in accumulation order
        """
