"""
core/session_manager.py — Redis-backed audit trail for conversion runs.

One conversion session owns three keys:

* ``session:<id>:input``: the note text and the run's settings,
* ``session:<id>:steps``: an ordered list of audit step records,
* ``session:<id>:output``: the final ``ConversionResult`` (by alias).

Each step record names one of ``AUDIT_STEPS`` and carries that step's
entries (calibration records, rejected candidates, span corrections or
duplicate resolutions) together with their count, so a reviewer can tell
from the log alone why a candidate did or did not reach the output.

Auditing is never fatal: every Redis failure is logged and swallowed.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Literal, Optional

import redis

logger = logging.getLogger(__name__)

AuditStep = Literal["calibration_log", "rejected", "span_corrections", "duplicates"]

AUDIT_STEPS: tuple[AuditStep, ...] = (
    "calibration_log",
    "rejected",
    "span_corrections",
    "duplicates",
)


class SessionManager:
    """Thin wrapper around Redis for per-conversion audit state."""

    TTL: int = 3600  # 1 hour

    def __init__(self, redis_url: str) -> None:
        """
        Connect to Redis.

        Parameters
        ----------
        redis_url : str
            Full Redis connection string (e.g. ``redis://default:pw@host:port``).
        """
        self._r = redis.from_url(redis_url, decode_responses=True)

    @staticmethod
    def _key(session_id: str, part: str) -> str:
        return f"session:{session_id}:{part}"

    # ------------------------------------------------------------------
    # Conversion input
    # ------------------------------------------------------------------

    def create_session(self, session_id: str, raw_input: dict) -> None:
        """Record the conversion input (note text, model, threshold)."""
        try:
            self._r.set(
                self._key(session_id, "input"),
                json.dumps(raw_input, ensure_ascii=False),
                ex=self.TTL,
            )
        except Exception as exc:
            logger.error("Redis create_session failed: %s", exc, extra={"session_id": session_id})

    def get_input(self, session_id: str) -> Optional[dict]:
        try:
            raw = self._r.get(self._key(session_id, "input"))
            return json.loads(raw) if raw else None
        except Exception as exc:
            logger.error("Redis get_input failed: %s", exc, extra={"session_id": session_id})
            return None

    # ------------------------------------------------------------------
    # Audit steps
    # ------------------------------------------------------------------

    def log_step(self, session_id: str, step: AuditStep, entries: list[dict]) -> None:
        """Append one audit step record to the session's step list.

        Raises
        ------
        ValueError
            *step* is not one of ``AUDIT_STEPS``. Raised before Redis is touched.
        """
        if step not in AUDIT_STEPS:
            raise ValueError(f"Unknown audit step {step!r}; expected one of {AUDIT_STEPS}")

        key = self._key(session_id, "steps")
        record = {
            "step": step,
            "count": len(entries),
            "entries": entries,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._r.rpush(key, json.dumps(record, default=str, ensure_ascii=False))
            self._r.expire(key, self.TTL)
        except Exception as exc:
            logger.error(
                "Redis log_step(%s) failed: %s", step, exc, extra={"session_id": session_id}
            )

    def get_step_log(self, session_id: str, step: Optional[AuditStep] = None) -> list[dict]:
        """Return the session's step records in order, optionally only *step*."""
        try:
            raw_list = self._r.lrange(self._key(session_id, "steps"), 0, -1)
            records = [json.loads(item) for item in raw_list]
        except Exception as exc:
            logger.error("Redis get_step_log failed: %s", exc, extra={"session_id": session_id})
            return []
        if step is not None:
            records = [r for r in records if r.get("step") == step]
        return records

    # ------------------------------------------------------------------
    # Final output
    # ------------------------------------------------------------------

    def set_output(self, session_id: str, output: dict) -> None:
        """Cache the final ConversionResult (serialised as dict)."""
        try:
            self._r.set(
                self._key(session_id, "output"),
                json.dumps(output, default=str, ensure_ascii=False),
                ex=self.TTL,
            )
        except Exception as exc:
            logger.error("Redis set_output failed: %s", exc, extra={"session_id": session_id})

    def get_output(self, session_id: str) -> Optional[dict]:
        """Return the cached result, or ``None``."""
        try:
            raw = self._r.get(self._key(session_id, "output"))
            return json.loads(raw) if raw else None
        except Exception as exc:
            logger.error("Redis get_output failed: %s", exc, extra={"session_id": session_id})
            return None

    # ------------------------------------------------------------------
    # Whole-session view
    # ------------------------------------------------------------------

    def get_audit(self, session_id: str) -> dict:
        """Assemble input, per-step entries and output for one session.

        Steps that were never logged map to an empty list. When a step was
        logged more than once its entries are concatenated in log order.
        """
        steps: dict[str, list[dict]] = {step: [] for step in AUDIT_STEPS}
        for record in self.get_step_log(session_id):
            steps.setdefault(record.get("step", "unknown"), []).extend(record.get("entries", []))
        return {
            "session_id": session_id,
            "input": self.get_input(session_id),
            "steps": steps,
            "output": self.get_output(session_id),
        }
