"""
batch.py

Per-item outcome of loops that must continue past individual failures
(ingestion, account sync, collection refresh).
"""
from dataclasses import dataclass, field
from typing import Any, List, Tuple


@dataclass
class BatchResult:
    succeeded: List[Any] = field(default_factory=list)
    failed: List[Tuple[Any, str]] = field(default_factory=list)

    def record_success(self, item: Any) -> None:
        self.succeeded.append(item)

    def record_failure(self, item: Any, error: Exception) -> None:
        self.failed.append((item, str(error) or type(error).__name__))

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "succeeded": [str(item) for item in self.succeeded],
            "failed": [{"item": str(item), "error": error} for item, error in self.failed],
        }
