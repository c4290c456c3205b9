"""JSON-file backed visit counter state.

One ``VisitStore`` owns the process-wide ``VisitRecord`` and the lock that
guards it. Every mutation is flushed to disk before the lock is released.
"""

import json
import logging
import os
import threading
from contextlib import contextmanager, suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Set, Tuple

log = logging.getLogger(__name__)


@dataclass
class VisitRecord:
    total_visits: int = 0
    unique_visitors: Set[str] = field(default_factory=set)
    user_visits: Dict[str, int] = field(default_factory=dict)

    def visit(self, identity: str) -> int:
        """Count one visit from ``identity`` and return its personal total."""
        self.total_visits += 1
        self.unique_visitors.add(identity)
        self.user_visits[identity] = self.user_visits.get(identity, 0) + 1
        return self.user_visits[identity]

    def to_dict(self) -> dict:
        return {
            "total_visits": self.total_visits,
            "unique_visitors": {ip: True for ip in self.unique_visitors},
            "user_visits": dict(self.user_visits),
        }

    @classmethod
    def from_dict(cls, payload) -> "VisitRecord":
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")

        total = payload.get("total_visits", 0)
        if total is None:
            total = 0
        if isinstance(total, bool) or not isinstance(total, int):
            raise ValueError(f"total_visits must be an integer, got {total!r}")

        unique = payload.get("unique_visitors")
        if unique is None:
            unique = {}
        if not isinstance(unique, dict):
            raise ValueError("unique_visitors must be an object")
        for ip, seen in unique.items():
            if not isinstance(seen, bool):
                raise ValueError(f"unique_visitors[{ip!r}] must be a boolean")

        users = payload.get("user_visits")
        if users is None:
            users = {}
        if not isinstance(users, dict):
            raise ValueError("user_visits must be an object")
        for ip, n in users.items():
            if isinstance(n, bool) or not isinstance(n, int):
                raise ValueError(f"user_visits[{ip!r}] must be an integer")
        if total != sum(users.values()):
            raise ValueError(
                f"total_visits {total} does not match per-visitor sum {sum(users.values())}"
            )

        return cls(
            total_visits=total,
            unique_visitors={ip for ip, seen in unique.items() if seen},
            user_visits=dict(users),
        )


class VisitStore:
    def __init__(self, path):
        self.path = Path(path)
        self.record = VisitRecord()
        self._lock = threading.Lock()

    def load(self) -> None:
        """Read the record from disk, starting fresh if it is missing or bad."""
        with self._lock:
            try:
                with self.path.open("r", encoding="utf-8") as f:
                    self.record = VisitRecord.from_dict(json.load(f))
            except FileNotFoundError:
                log.info("No stats file at %s, starting fresh", self.path)
                self.record = VisitRecord()
            except (OSError, ValueError) as e:
                # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
                log.warning("Error decoding stats from %s, starting fresh: %s", self.path, e)
                self.record = VisitRecord()

    def save(self) -> None:
        """Overwrite the stats file with the current record. Hold the lock."""
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(self.record.to_dict(), f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as e:
            log.error("Error saving stats to %s: %s", self.path, e)
            with suppress(OSError):
                tmp.unlink()

    def hit(self, identity: str) -> Tuple[int, int, int]:
        """Record a visit and return (personal, total, unique)."""
        with self._lock:
            personal = self.record.visit(identity)
            self.save()
            return personal, self.record.total_visits, len(self.record.unique_visitors)

    @contextmanager
    def locked(self) -> Iterator[VisitRecord]:
        with self._lock:
            yield self.record

    def snapshot(self) -> dict:
        with self._lock:
            return self.record.to_dict()
