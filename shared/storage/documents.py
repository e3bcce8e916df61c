"""Local JSON document persistence with a pluggable best-effort mirror."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Mapping, NamedTuple, Protocol

from shared import health as healthmod

__all__ = ["DocumentSink", "DocumentStore", "MirrorError", "SaveReport"]

log = logging.getLogger("rolekeeper.storage")


class MirrorError(RuntimeError):
    """Raised by a :class:`DocumentSink` when a remote write attempt fails."""


class DocumentSink(Protocol):
    """Remote copy target for persisted documents."""

    async def put(
        self,
        path: str,
        payload: bytes,
        *,
        revision_hint: str | None = None,
        message: str | None = None,
    ) -> str | None:
        """Store ``payload`` at ``path`` and return the new revision marker.

        ``revision_hint`` is the marker returned by the previous successful
        call for the same path, if any. Implementations raise
        :class:`MirrorError` on failure.
        """


class SaveReport(NamedTuple):
    written: bool
    mirrored: bool | None  # None when no sink is configured


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def encode_document(document: Mapping[str, Any]) -> str:
    """Render ``document`` the way it is stored locally and mirrored."""

    return json.dumps(document, indent=2, ensure_ascii=False)


class DocumentStore:
    """Reads and writes named JSON documents under one directory.

    Every ``save`` writes the local file first (atomic replace) and then hands
    the same bytes to the optional sink. Neither step raises: failures are
    logged and reported through the returned :class:`SaveReport`, leaving the
    caller's in-memory state authoritative.
    """

    def __init__(self, directory: Path | str, *, sink: DocumentSink | None = None) -> None:
        self.directory = Path(directory)
        self.sink = sink
        self._locks: Dict[str, asyncio.Lock] = {}
        self._revisions: Dict[str, str] = {}

    def path_for(self, name: str) -> Path:
        return self.directory / name

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[name] = lock
        return lock

    async def load(self, name: str) -> dict[str, Any]:
        """Return the stored document, or an empty mapping when unavailable."""

        path = self.path_for(name)
        try:
            raw = await asyncio.to_thread(_read_text, path)
        except FileNotFoundError:
            log.info("document missing; starting empty", extra={"document": name})
            return {}
        except OSError as exc:
            log.error(
                "document read failed; starting empty",
                extra={"document": name, "error": str(exc)},
            )
            return {}

        try:
            document = json.loads(raw) if raw.strip() else {}
        except ValueError as exc:
            log.error(
                "document is not valid JSON; starting empty",
                extra={"document": name, "error": str(exc)},
            )
            return {}

        if not isinstance(document, dict):
            log.warning(
                "document root is not an object; starting empty",
                extra={"document": name, "type": type(document).__name__},
            )
            return {}
        return document

    async def save(self, name: str, document: Mapping[str, Any]) -> SaveReport:
        text = encode_document(document)
        async with self._lock_for(name):
            written = await self._write_local(name, text)
            mirrored: bool | None = None
            sink = self.sink
            if sink is not None:
                mirrored = await self._mirror(sink, name, text.encode("utf-8"))
        return SaveReport(written=written, mirrored=mirrored)

    async def _write_local(self, name: str, text: str) -> bool:
        path = self.path_for(name)
        try:
            await asyncio.to_thread(_write_atomic, path, text)
        except OSError as exc:
            log.warning(
                "document write failed; in-memory state kept",
                extra={"document": name, "path": str(path), "error": str(exc)},
            )
            healthmod.set_component("storage", False, detail=f"{name}: {exc}")
            return False
        healthmod.set_component("storage", True)
        log.debug("document saved", extra={"document": name, "bytes": len(text)})
        return True

    async def _mirror(self, sink: DocumentSink, name: str, payload: bytes) -> bool:
        hint = self._revisions.get(name)
        try:
            revision = await sink.put(
                name,
                payload,
                revision_hint=hint,
                message=f"Auto-update {name} by bot",
            )
        except MirrorError as exc:
            self._mirror_failed(name, str(exc))
            return False
        except Exception as exc:
            log.exception("document mirror raised unexpectedly", extra={"document": name})
            self._mirror_failed(name, f"{type(exc).__name__}: {exc}")
            return False

        if revision:
            self._revisions[name] = revision
        else:
            self._revisions.pop(name, None)
        healthmod.set_component("mirror", True)
        log.info("document mirrored", extra={"document": name, "revision": revision})
        return True

    def _mirror_failed(self, name: str, detail: str) -> None:
        # A stale marker is the usual cause of a rejected update; refetch next time.
        self._revisions.pop(name, None)
        log.warning("document mirror failed", extra={"document": name, "error": detail})
        healthmod.set_component("mirror", False, detail=detail[:200])
