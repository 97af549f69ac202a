"""
errors.py

Error kinds raised while loading, and the per-batch report that row-level
errors are aggregated into.

Row-level errors (MalformedRecord, UnresolvedReference) reject one record and
never abort a batch. Batch-level errors (KeyCollision, StorageUnavailable,
IngestionCancelled) abort the batch before anything becomes visible.
"""

from collections import Counter
from typing import Any, Dict, List, Optional

MAX_ERROR_SAMPLES = 5


class EtlError(Exception):
    """Base class for all loader errors."""


# ───────────── Row-level ───────────────────────────────────────────────────────
class RowError(EtlError):
    def __init__(self, message: str, *, row_number: Optional[int] = None, record: Any = None):
        super().__init__(message)
        self.row_number = row_number
        self.record = record


class MalformedRecord(RowError):
    """A record is missing a required field or has a value of the wrong type."""


class UnresolvedReference(RowError):
    """A fact references a business key that is not present in a dimension."""

    def __init__(self, dimension: str, business_key: Any, **kwargs):
        super().__init__(
            f"business key {business_key!r} not found in dimension '{dimension}'", **kwargs
        )
        self.dimension = dimension
        self.business_key = business_key


# ───────────── Batch-level ─────────────────────────────────────────────────────
class BatchError(EtlError):
    pass


class KeyCollision(BatchError):
    """Surrogate key assignment broke the strictly increasing invariant."""


class StorageUnavailable(BatchError):
    """The storage or ingestion collaborator failed to read or write."""


class IngestionCancelled(BatchError):
    """Ingestion was cancelled or ran past its deadline; the batch was discarded."""


# ───────────── Reporting ───────────────────────────────────────────────────────
class BatchReport:
    """
    Tally of one stage over one batch: accepted rows, rejected rows by error
    kind, arbitrary per-label counts and the first few error samples.
    """

    def __init__(self, stage: str, max_samples: int = MAX_ERROR_SAMPLES):
        self.stage = stage
        self.max_samples = max_samples
        self.accepted = 0
        self.rejected: Counter = Counter()
        self.counts: Counter = Counter()
        self.samples: List[Dict[str, Any]] = []

    def accept(self, n: int = 1) -> None:
        self.accepted += n

    def tally(self, label: str, n: int = 1) -> None:
        self.counts[label] += n

    def reject(self, error: RowError) -> None:
        self.rejected[type(error).__name__] += 1
        if len(self.samples) < self.max_samples:
            self.samples.append({
                "error": type(error).__name__,
                "message": str(error),
                "row_number": error.row_number,
            })

    @property
    def rejected_count(self) -> int:
        return sum(self.rejected.values())

    @property
    def total(self) -> int:
        return self.accepted + self.rejected_count

    def summary(self) -> str:
        parts = [f"{self.stage}: {self.accepted} accepted, {self.rejected_count} rejected"]
        if self.counts:
            parts.append(", ".join(f"{k}={v}" for k, v in sorted(self.counts.items())))
        return " | ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "accepted": self.accepted,
            "rejected": dict(self.rejected),
            "counts": dict(self.counts),
            "samples": list(self.samples),
        }

    def __repr__(self):
        return f"<BatchReport {self.summary()}>"
