"""
core/reference_index.py — Load the canonical HPO dataset once and expose
read-only lookups.

The index is an explicit instance (no module-level singleton), so tests and
embedders can hold several independent indexes. Loading is single-flight:
concurrent ``load()`` calls await the same in-flight task and all see the
same result or the same failure. The in-flight marker is cleared whether the
load succeeds or fails, so a later call can retry.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx
from pydantic import ValidationError

from core.errors import DataUnavailable, IndexNotReady
from core.models import ReferenceRecord

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]

FETCH_TIMEOUT_S = 30.0


class ReferenceIndex:
    """In-memory HPO reference data: id map, id set and an ordered scan list."""

    def __init__(
        self,
        source: str | Path | None = None,
        *,
        fetch: Optional[Fetcher] = None,
    ) -> None:
        """
        Parameters
        ----------
        source : str or Path, optional
            Filesystem path or ``http(s)://`` URL of a JSON array of
            ``{hpoId, nameEn, nameCn, definition, definitionZh}`` objects.
        fetch : async callable, optional
            Returns the raw decoded payload. Overrides ``source``.
        """
        if source is None and fetch is None:
            raise ValueError("ReferenceIndex needs a source or a fetch callable")
        self._source = source
        self._fetch = fetch

        self._by_id: dict[str, ReferenceRecord] = {}
        self._id_set: frozenset[str] = frozenset()
        self._records: tuple[ReferenceRecord, ...] = ()

        self._in_flight: Optional[asyncio.Task] = None
        self._last_error: Optional[DataUnavailable] = None

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_records(cls, records: Iterable[ReferenceRecord | dict]) -> "ReferenceIndex":
        """Build a ready index synchronously from records or raw dicts."""

        async def _no_fetch() -> Any:
            raise DataUnavailable("index was built from records; nothing to fetch")

        index = cls(fetch=_no_fetch)
        parsed = [
            r if isinstance(r, ReferenceRecord) else ReferenceRecord.model_validate(r)
            for r in records
        ]
        if not parsed:
            raise DataUnavailable("HPO reference dataset is empty")
        index._populate(parsed)
        return index

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> "ReferenceIndex":
        """Fetch and index the dataset. Idempotent; concurrent calls coalesce."""
        if self.is_ready():
            return self

        if self._in_flight is None:
            self._in_flight = asyncio.ensure_future(self._load_once())
            self._in_flight.add_done_callback(_consume_exception)

        # shield: a cancelled caller must not cancel the shared load
        await asyncio.shield(self._in_flight)
        return self

    async def _load_once(self) -> None:
        t0 = time.perf_counter()
        try:
            payload = await self._fetch_payload()
            records = _parse_records(payload)
            self._populate(records)
            self._last_error = None
            logger.info(
                "Loaded %d HPO entries in %.2fs",
                len(records),
                time.perf_counter() - t0,
                extra={"hpo_count": len(records), "source": str(self._source or "<fetch>")},
            )
        except DataUnavailable as exc:
            self._last_error = exc
            logger.error("HPO reference load failed: %s", exc)
            raise
        except Exception as exc:
            err = DataUnavailable(f"Failed to load HPO data: {exc}")
            err.__cause__ = exc
            self._last_error = err
            logger.error("HPO reference load failed: %s", exc, exc_info=True)
            raise err
        finally:
            self._in_flight = None

    async def _fetch_payload(self) -> Any:
        if self._fetch is not None:
            return await self._fetch()

        source = str(self._source)
        if source.startswith(("http://", "https://")):
            try:
                async with httpx.AsyncClient(timeout=FETCH_TIMEOUT_S, follow_redirects=True) as client:
                    response = await client.get(source)
                    response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise DataUnavailable(
                    f"Failed to load HPO data: HTTP {exc.response.status_code}"
                ) from exc
            except httpx.HTTPError as exc:
                raise DataUnavailable(f"Failed to load HPO data: {exc}") from exc
            try:
                return response.json()
            except json.JSONDecodeError as exc:
                raise DataUnavailable("HPO data is not valid JSON") from exc

        path = Path(source)
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as exc:
            raise DataUnavailable(f"Failed to read HPO data from {path}: {exc}") from exc
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise DataUnavailable(f"Invalid JSON in {path}: {exc}") from exc

    def _populate(self, records: list[ReferenceRecord]) -> None:
        by_id: dict[str, ReferenceRecord] = {}
        for record in records:
            by_id.setdefault(record.id, record)
        self._by_id = by_id
        self._id_set = frozenset(by_id)
        self._records = tuple(records)

    # ------------------------------------------------------------------
    # Read-only lookups
    # ------------------------------------------------------------------

    def is_ready(self) -> bool:
        return len(self._records) > 0

    def require_ready(self) -> None:
        """Raise unless the index is loaded.

        ``DataUnavailable`` if the last load failed, ``IndexNotReady`` if no
        load has completed yet.
        """
        if self.is_ready():
            return
        if self._last_error is not None:
            raise DataUnavailable(str(self._last_error)) from self._last_error
        raise IndexNotReady("HPO reference data has not finished loading")

    def get_by_id(self, hpo_id: str) -> Optional[ReferenceRecord]:
        return self._by_id.get(hpo_id)

    def is_valid_id(self, hpo_id: str) -> bool:
        return hpo_id in self._id_set

    def count(self) -> int:
        return len(self._records)

    @property
    def records(self) -> tuple[ReferenceRecord, ...]:
        return self._records

    @property
    def by_id(self) -> dict[str, ReferenceRecord]:
        return self._by_id

    @property
    def id_set(self) -> frozenset[str]:
        return self._id_set

    @property
    def last_error(self) -> Optional[DataUnavailable]:
        return self._last_error


def _consume_exception(task: asyncio.Task) -> None:
    # Every waiter may have been cancelled; the failure is kept in last_error.
    if not task.cancelled():
        task.exception()


def _parse_records(payload: Any) -> list[ReferenceRecord]:
    """Validate the decoded payload; skip individual malformed items."""
    if not isinstance(payload, list):
        raise DataUnavailable(
            f"Invalid HPO data: expected array, got {type(payload).__name__}"
        )

    records: list[ReferenceRecord] = []
    skipped = 0
    for item in payload:
        try:
            records.append(ReferenceRecord.model_validate(item))
        except ValidationError:
            skipped += 1
            logger.debug("Skipping malformed HPO record: %r", item)

    if skipped:
        logger.warning("Skipped %d malformed HPO records", skipped)
    if not records:
        raise DataUnavailable("HPO reference dataset is empty")
    return records
