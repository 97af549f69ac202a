"""
dimension.py

In-memory model of a dimension table.

A Dimension is an immutable snapshot: rows sorted by surrogate key and
indexed by business key. Reconciliation never edits a snapshot, it builds
the next one and the store swaps it in.
"""

import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Hashable, Iterable, Iterator, List, Mapping, Optional, Tuple

import pandas as pd

from warehouse.config import FIRST_SURROGATE_KEY
from warehouse.errors import KeyCollision


@dataclass(frozen=True)
class DimensionRow:
    surrogate_key: int
    business_key: Hashable
    attributes: Mapping[str, Any] = field(default_factory=dict)
    insert_batch: Optional[int] = None
    update_batch: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def get(self, column: str, default: Any = None) -> Any:
        return self.attributes.get(column, default)

    def with_attributes(self, attributes: Mapping[str, Any], batch_id: Optional[int] = None) -> "DimensionRow":
        """Type 1 replacement: same surrogate key, overwritten attributes."""
        return DimensionRow(
            surrogate_key=self.surrogate_key,
            business_key=self.business_key,
            attributes=attributes,
            insert_batch=self.insert_batch,
            update_batch=batch_id,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "surrogate_key": self.surrogate_key,
            "business_key": self.business_key,
            **self.attributes,
            "insert_id": self.insert_batch,
            "update_id": self.update_batch,
        }


class SurrogateKeyCounter:
    """Strictly increasing key source owned by a single dimension's reconciler."""

    def __init__(self, start: int = FIRST_SURROGATE_KEY):
        self._next = start
        self._lock = threading.Lock()

    @classmethod
    def after(cls, dimension: "Dimension") -> "SurrogateKeyCounter":
        return cls(max(dimension.max_surrogate_key + 1, FIRST_SURROGATE_KEY))

    def next(self) -> int:
        with self._lock:
            key = self._next
            self._next += 1
            return key

    def advance_to(self, key: int) -> None:
        """Never hand out anything below `key` again."""
        with self._lock:
            if self._next < key:
                self._next = key

    def peek(self) -> int:
        return self._next

    def __repr__(self):
        return f"SurrogateKeyCounter(next={self._next})"


class Dimension:
    def __init__(self, name: str, rows: Iterable[DimensionRow] = ()):
        self.name = name
        self._rows: Tuple[DimensionRow, ...] = tuple(rows)
        self._by_key: Dict[int, DimensionRow] = {}
        self._versions: Dict[Hashable, List[int]] = {}

        previous = None
        for row in self._rows:
            if previous is not None and row.surrogate_key <= previous:
                raise KeyCollision(
                    f"dimension '{name}': surrogate key {row.surrogate_key} "
                    f"is not greater than preceding key {previous}"
                )
            previous = row.surrogate_key
            self._by_key[row.surrogate_key] = row
            # Rows arrive in ascending key order, so each version list stays sorted.
            self._versions.setdefault(row.business_key, []).append(row.surrogate_key)

    def __len__(self):
        return len(self._rows)

    def __iter__(self) -> Iterator[DimensionRow]:
        return iter(self._rows)

    def __contains__(self, business_key) -> bool:
        return business_key in self._versions

    def __repr__(self):
        return f"<Dimension {self.name}: {len(self._rows)} rows, {len(self._versions)} members>"

    @property
    def rows(self) -> Tuple[DimensionRow, ...]:
        return self._rows

    @property
    def max_surrogate_key(self) -> int:
        return self._rows[-1].surrogate_key if self._rows else FIRST_SURROGATE_KEY - 1

    def get(self, surrogate_key: int) -> Optional[DimensionRow]:
        return self._by_key.get(surrogate_key)

    def current(self, business_key) -> Optional[DimensionRow]:
        """The latest version: highest surrogate key among rows with this business key."""
        keys = self._versions.get(business_key)
        return self._by_key[keys[-1]] if keys else None

    def versions(self, business_key) -> List[DimensionRow]:
        return [self._by_key[k] for k in self._versions.get(business_key, ())]

    def business_keys(self) -> List[Hashable]:
        return list(self._versions)

    def current_rows(self) -> List[DimensionRow]:
        return [self._by_key[keys[-1]] for keys in self._versions.values()]

    def to_frame(self) -> pd.DataFrame:
        """Full scan ordered by surrogate key, as a DataFrame."""
        return pd.DataFrame([row.as_dict() for row in self._rows])
