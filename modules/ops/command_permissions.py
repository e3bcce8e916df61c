"""Persisted role permit-lists gating the administrative prefix commands."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from discord.ext import commands

from shared.storage import DocumentStore

__all__ = [
    "CommandPermissionDenied",
    "PermissionOutcome",
    "PermissionStore",
    "ensure_permitted",
    "root_command_name",
]

log = logging.getLogger("rolekeeper.permissions")


class PermissionOutcome(str, Enum):
    ADDED = "added"
    ALREADY_PRESENT = "already_present"
    REMOVED = "removed"
    NOT_PRESENT = "not_present"


def _normalize_command(command: str) -> str:
    return str(command or "").strip().lower()


def _normalize_ids(raw: object) -> List[str]:
    items: List[str] = []
    if isinstance(raw, (list, tuple)):
        for item in raw:
            text = str(item).strip() if item is not None else ""
            if text and text not in items:
                items.append(text)
    return items


class PermissionStore:
    """Command name -> ordered role ids allowed to run it.

    A command with no entry is restricted to the configured owner. The owner
    always passes :meth:`is_permitted`. Mutations are serialized. The index
    is then written through the shared :class:`DocumentStore` once the
    mutation lock is released.
    """

    DOCUMENT = "permissions.json"

    def __init__(self, documents: DocumentStore, *, owner_id: Optional[str | int] = None) -> None:
        self._documents = documents
        self.owner_id = str(owner_id) if owner_id not in (None, "") else None
        self._index: Dict[str, List[str]] = {}
        self._lock = asyncio.Lock()
        self._save_lock = asyncio.Lock()

    async def load(self) -> None:
        payload = await self._documents.load(self.DOCUMENT)
        self._index = self._normalize(payload)
        log.info(
            "command permissions loaded",
            extra={"commands": len(self._index), "document": self.DOCUMENT},
        )

    @staticmethod
    def _normalize(payload: Mapping[str, object]) -> Dict[str, List[str]]:
        index: Dict[str, List[str]] = {}
        for command, roles in payload.items():
            name = _normalize_command(command)
            ids = _normalize_ids(roles)
            if not name or not ids:
                continue
            existing = index.setdefault(name, [])
            existing.extend(role for role in ids if role not in existing)
        return index

    def snapshot(self) -> Dict[str, List[str]]:
        return {command: list(roles) for command, roles in self._index.items()}

    def is_owner(self, actor_id: object) -> bool:
        return self.owner_id is not None and str(actor_id) == self.owner_id

    def is_permitted(self, command: str, actor_id: object, actor_role_ids: Iterable[object]) -> bool:
        if self.is_owner(actor_id):
            return True
        required = self._index.get(_normalize_command(command))
        if not required:
            return False
        held = {str(role_id) for role_id in actor_role_ids}
        return any(role_id in held for role_id in required)

    def list_all(self) -> List[Tuple[str, Tuple[str, ...]]]:
        return [(command, tuple(roles)) for command, roles in self._index.items()]

    async def add_role(self, command: str, role_id: object) -> PermissionOutcome:
        name = _normalize_command(command)
        role = str(role_id)
        async with self._lock:
            roles = self._index.setdefault(name, [])
            if role in roles:
                return PermissionOutcome.ALREADY_PRESENT
            roles.append(role)
        log.info("command permission added", extra={"command": name, "role_id": role})
        await self._persist()
        return PermissionOutcome.ADDED

    async def remove_role(self, command: str, role_id: object) -> PermissionOutcome:
        name = _normalize_command(command)
        role = str(role_id)
        async with self._lock:
            roles = self._index.get(name)
            if not roles or role not in roles:
                return PermissionOutcome.NOT_PRESENT
            roles.remove(role)
            if not roles:
                del self._index[name]
        log.info("command permission removed", extra={"command": name, "role_id": role})
        await self._persist()
        return PermissionOutcome.REMOVED

    async def purge_role(self, role_id: object) -> bool:
        """Drop ``role_id`` from every permit-list; persist only on change."""

        role = str(role_id)
        async with self._lock:
            touched = [command for command, roles in self._index.items() if role in roles]
            if not touched:
                return False
            for command in touched:
                remaining = [item for item in self._index[command] if item != role]
                if remaining:
                    self._index[command] = remaining
                else:
                    del self._index[command]
        log.info(
            "deleted role purged from permissions",
            extra={"role_id": role, "commands": ",".join(touched)},
        )
        await self._persist()
        return True

    async def _persist(self) -> None:
        async with self._save_lock:
            await self._documents.save(self.DOCUMENT, self.snapshot())


class CommandPermissionDenied(commands.CheckFailure):
    """Raised by the command gate when the actor is not on the permit-list."""

    def __init__(self, command: str) -> None:
        super().__init__(f"not permitted to run {command}")
        self.command = command


def root_command_name(ctx: commands.Context) -> str:
    command = getattr(ctx, "command", None)
    root = getattr(command, "root_parent", None) or command
    return _normalize_command(getattr(root, "name", "") or "")


def ensure_permitted(store: PermissionStore, ctx: commands.Context) -> bool:
    """Command check: owner or a role on the top-level command's permit-list."""

    author = getattr(ctx, "author", None)
    command = root_command_name(ctx)
    role_ids = [getattr(role, "id", None) for role in (getattr(author, "roles", None) or [])]
    if store.is_permitted(command, getattr(author, "id", None), role_ids):
        return True
    log.info(
        "command denied by permit-list",
        extra={"command": command, "user_id": getattr(author, "id", None)},
    )
    raise CommandPermissionDenied(command)
