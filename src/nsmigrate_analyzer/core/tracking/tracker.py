from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...errors import InvalidTransitionError
from ...models.schema import MigrationPlan, ProgressRecord, ProgressState

ALLOWED_TRANSITIONS = {
    (ProgressState.PLANNED, ProgressState.IN_PROGRESS),
    (ProgressState.PLANNED, ProgressState.FAILED),
    (ProgressState.IN_PROGRESS, ProgressState.DONE),
    (ProgressState.IN_PROGRESS, ProgressState.FAILED),
}

# untouched by re-adoption
_KEEP_ON_ADOPT = (ProgressState.IN_PROGRESS, ProgressState.DONE)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(ts: datetime) -> datetime:
    """Naive timestamps are taken as UTC."""
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


class ProgressTracker:
    """
    Append-only progress history per plan unit.

    Writes are serialized by one lock; reads copy under the same lock, so a
    reader never sees a half-applied transition.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._history: Dict[str, List[ProgressRecord]] = {}
        self._units: List[str] = []

    # --- writes ---

    def adopt_plan(self, plan: MigrationPlan, timestamp: Optional[datetime] = None) -> List[str]:
        """Seed PLANNED for every unit of the plan; returns the subjects (re)seeded."""
        ts = _as_utc(timestamp) if timestamp else _now()
        seeded: List[str] = []
        with self._lock:
            subjects = [u.subject for u in plan.units()]
            for subject in subjects:
                hist = self._history.get(subject)
                if hist and hist[-1].state in _KEEP_ON_ADOPT:
                    continue
                if hist and hist[-1].state == ProgressState.PLANNED:
                    continue
                stamp = ts if not hist or ts >= hist[-1].timestamp else hist[-1].timestamp
                self._history.setdefault(subject, []).append(ProgressRecord(subject, ProgressState.PLANNED, stamp))
                seeded.append(subject)
            self._units = subjects
        return seeded

    def record_transition(self, subject: str, new_state: ProgressState, timestamp: Optional[datetime] = None) -> ProgressRecord:
        new_state = ProgressState(new_state)
        ts = _as_utc(timestamp) if timestamp else _now()
        with self._lock:
            hist = self._history.get(subject)
            if not hist:
                raise InvalidTransitionError(subject, None, new_state, "subject is not part of an adopted plan")
            last = hist[-1]
            if (last.state, new_state) not in ALLOWED_TRANSITIONS:
                raise InvalidTransitionError(subject, last.state, new_state)
            if ts < last.timestamp:
                raise InvalidTransitionError(
                    subject, last.state, new_state, f"timestamp {ts.isoformat()} is older than {last.timestamp.isoformat()}"
                )
            rec = ProgressRecord(subject, new_state, ts)
            hist.append(rec)
            return rec

    # --- reads ---

    def current_state(self, subject: str) -> Optional[ProgressState]:
        with self._lock:
            hist = self._history.get(subject)
            return hist[-1].state if hist else None

    def history(self, subject: str) -> List[ProgressRecord]:
        with self._lock:
            return list(self._history.get(subject, []))

    def subjects_in_state(self, state: ProgressState) -> List[str]:
        state = ProgressState(state)
        with self._lock:
            return sorted(s for s in self._units if self._history[s][-1].state == state)

    def current_progress(self) -> float:
        with self._lock:
            if not self._units:
                return 0.0
            done = sum(1 for s in self._units if self._history[s][-1].state == ProgressState.DONE)
            return done / len(self._units)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            counts = {st.value: 0 for st in ProgressState}
            current = {}
            for s in self._units:
                st = self._history[s][-1].state
                counts[st.value] += 1
                current[s] = st.value
            total = len(self._units)
            done = counts[ProgressState.DONE.value]
            return {
                "units": list(self._units),
                "current": current,
                "counts": counts,
                "progress": done / total if total else 0.0,
                "history": {s: [r.to_dict() for r in recs] for s, recs in sorted(self._history.items())},
            }

    # --- persistence ---

    def save(self, path: Path) -> None:
        data = self.snapshot()
        Path(path).write_text(json.dumps(data, indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> "ProgressTracker":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        t = cls()
        for subject, recs in (data.get("history") or {}).items():
            t._history[subject] = [
                ProgressRecord(
                    subject=subject,
                    state=ProgressState(r["state"]),
                    timestamp=_as_utc(datetime.fromisoformat(r["timestamp"])),
                )
                for r in recs
            ]
        t._units = [s for s in data.get("units") or [] if s in t._history]
        return t
