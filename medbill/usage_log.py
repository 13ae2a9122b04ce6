import json
import logging
import os
import threading
import time
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

logger = logging.getLogger("medbill.usage_log")

# meta values that mark an event as served by a fallback path
_DEGRADED_SOURCES = {"fallback"}


def _today() -> str:
    return datetime.now().strftime("%Y-%m-%d")


def _tally(counts: Counter, entry: Dict[str, Any]) -> None:
    etype = entry.get("type") or "unknown"
    counts[f"events_{etype}"] += 1
    if int(entry.get("status") or 0) >= 400:
        counts[f"errors_{etype}"] += 1
    meta = entry.get("meta") or {}
    if meta.get("degraded") or any(v in _DEGRADED_SOURCES for v in meta.values() if isinstance(v, str)):
        counts[f"degraded_{etype}"] += 1


class UsageLogger:
    """
    Daily JSONL file of request outcomes: patient saves, suggestions (and
    whether the model or the keyword rules answered), uploads, bills.
    Write failures are logged and dropped so a full disk never fails a request.
    """

    def __init__(self, log_dir: str) -> None:
        self.log_dir = log_dir
        self._lock = threading.Lock()
        self._pending: Dict[str, Counter] = {}

    def path_for(self, day: str) -> str:
        return os.path.join(self.log_dir, f"usage_{day}.jsonl")

    def log_event(self, event_type: str, status: int = 200, meta: Optional[Dict[str, Any]] = None) -> None:
        entry = {"ts": time.time(), "type": event_type, "status": status, "meta": meta or {}}
        day = _today()
        with self._lock:
            try:
                os.makedirs(self.log_dir, exist_ok=True)
                with open(self.path_for(day), "a", encoding="utf-8") as f:
                    f.write(json.dumps(entry, default=str) + "\n")
            except OSError as e:
                # keep it in memory so the day's summary is still right
                logger.warning("usage event %s not persisted: %s", event_type, e)
                # earlier days are never summarized from memory again
                self._pending = {d: c for d, c in self._pending.items() if d == day}
                _tally(self._pending.setdefault(day, Counter()), entry)

    def _entries(self, day: str) -> Iterator[Dict[str, Any]]:
        path = self.path_for(day)
        if not os.path.exists(path):
            return
        with open(path, "r", encoding="utf-8") as f:
            for raw in f:
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    yield json.loads(raw)
                except ValueError:
                    logger.debug("skipping corrupt usage line in %s", path)

    def summarize_day(self, day: Optional[str] = None) -> Dict[str, int]:
        """Counts for one day, including events from earlier processes."""
        target = day or _today()
        counts: Counter = Counter()
        for entry in self._entries(target):
            _tally(counts, entry)
        with self._lock:
            counts.update(self._pending.get(target, Counter()))
        return dict(counts)
