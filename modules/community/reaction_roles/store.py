"""Reaction-role rules keyed by the message they are attached to."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from shared.emoji import EmojiKey, normalize_emoji_input, parse_emoji
from shared.storage import DocumentStore

__all__ = ["RoleGrantRule", "ReactionRoleStore", "RuleOutcome"]

log = logging.getLogger("rolekeeper.reaction_roles.store")


class RuleOutcome(str, Enum):
    ADDED = "added"
    DUPLICATE_EXISTS = "duplicate_exists"
    REMOVED = "removed"
    NO_SUCH_MAPPING = "no_such_mapping"


def _optional_id(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True, slots=True)
class RoleGrantRule:
    """Grant ``target_role_id`` to whoever reacts with ``emoji_key``."""

    emoji_key: str
    target_role_id: str
    source_channel_id: Optional[str] = None
    require_role_id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "emoji_key", normalize_emoji_input(self.emoji_key))
        object.__setattr__(self, "target_role_id", str(self.target_role_id).strip())
        object.__setattr__(self, "source_channel_id", _optional_id(self.source_channel_id))
        object.__setattr__(self, "require_role_id", _optional_id(self.require_role_id))

    @property
    def emoji(self) -> EmojiKey | None:
        return parse_emoji(self.emoji_key)

    @property
    def identity(self) -> Tuple[EmojiKey | None, str, Optional[str]]:
        return (self.emoji, self.target_role_id, self.require_role_id)

    def references_role(self, role_id: str) -> bool:
        return role_id in (self.target_role_id, self.require_role_id)

    def with_channel(self, channel_id: object) -> "RoleGrantRule":
        return RoleGrantRule(
            emoji_key=self.emoji_key,
            target_role_id=self.target_role_id,
            source_channel_id=_optional_id(channel_id),
            require_role_id=self.require_role_id,
        )

    def to_document(self) -> Dict[str, Optional[str]]:
        return {
            "emojiId": self.emoji_key,
            "roleId": self.target_role_id,
            "channelId": self.source_channel_id,
            "requireRoleId": self.require_role_id,
        }

    @classmethod
    def from_document(cls, payload: Mapping[str, Any]) -> Optional["RoleGrantRule"]:
        emoji = normalize_emoji_input(str(payload.get("emojiId") or ""))
        role_id = _optional_id(payload.get("roleId"))
        if not emoji or role_id is None:
            return None
        return cls(
            emoji_key=emoji,
            target_role_id=role_id,
            source_channel_id=payload.get("channelId"),
            require_role_id=payload.get("requireRoleId"),
        )


class ReactionRoleStore:
    """In-memory index of reaction-role rules with write-through persistence.

    Entries are keyed by message id and keep their insertion order. A message
    entry exists only while it holds at least one rule. Mutations run under
    the store lock, so concurrent handlers never interleave their
    read-modify-write cycles. Each change then persists the whole index
    outside that lock, so a slow mirror never delays the next mutation.
    """

    DOCUMENT = "reactionRoleMap.json"

    def __init__(self, documents: DocumentStore) -> None:
        self._documents = documents
        self._index: Dict[str, List[RoleGrantRule]] = {}
        self._lock = asyncio.Lock()
        self._save_lock = asyncio.Lock()

    async def load(self) -> None:
        payload = await self._documents.load(self.DOCUMENT)
        self._index = self._from_snapshot(payload)
        log.info(
            "reaction-role mappings loaded",
            extra={"messages": len(self._index), "document": self.DOCUMENT},
        )

    @staticmethod
    def _from_snapshot(payload: Mapping[str, Any]) -> Dict[str, List[RoleGrantRule]]:
        index: Dict[str, List[RoleGrantRule]] = {}
        skipped = 0
        for message_id, entries in payload.items():
            if not isinstance(entries, list):
                skipped += 1
                continue
            rules: List[RoleGrantRule] = []
            for entry in entries:
                rule = RoleGrantRule.from_document(entry) if isinstance(entry, Mapping) else None
                if rule is None:
                    skipped += 1
                    continue
                if any(existing.identity == rule.identity for existing in rules):
                    skipped += 1
                    continue
                rules.append(rule)
            if rules:
                index[str(message_id)] = rules
        if skipped:
            log.warning("reaction-role document had invalid entries", extra={"skipped": skipped})
        return index

    def snapshot(self) -> Dict[str, List[Dict[str, Optional[str]]]]:
        return {
            message_id: [rule.to_document() for rule in rules]
            for message_id, rules in self._index.items()
        }

    def lookup(self, message_id: object) -> List[RoleGrantRule]:
        return list(self._index.get(str(message_id), ()))

    def find(self, message_id: object, emoji: str | EmojiKey | None) -> List[RoleGrantRule]:
        """Return the rules on ``message_id`` triggered by ``emoji``."""

        wanted = parse_emoji(emoji)
        if wanted is None:
            return []
        return [rule for rule in self._index.get(str(message_id), ()) if rule.emoji == wanted]

    def list_all(self) -> List[Tuple[str, RoleGrantRule]]:
        return [
            (message_id, rule)
            for message_id, rules in self._index.items()
            for rule in rules
        ]

    def __contains__(self, message_id: object) -> bool:
        return str(message_id) in self._index

    def __len__(self) -> int:
        return len(self._index)

    async def add_rule(
        self, message_id: object, channel_id: object, rule: RoleGrantRule
    ) -> RuleOutcome:
        if rule.emoji is None or not rule.target_role_id:
            raise ValueError(f"reaction-role rule needs an emoji and a target role: {rule!r}")
        key = str(message_id)
        if channel_id is not None:
            rule = rule.with_channel(channel_id)
        async with self._lock:
            rules = self._index.get(key, [])
            if any(existing.identity == rule.identity for existing in rules):
                return RuleOutcome.DUPLICATE_EXISTS
            self._index[key] = [*rules, rule]
        log.info(
            "reaction-role mapping added",
            extra={
                "message_id": key,
                "emoji": rule.emoji_key,
                "role_id": rule.target_role_id,
                "require_role_id": rule.require_role_id,
            },
        )
        await self._persist()
        return RuleOutcome.ADDED

    async def remove_rule(self, message_id: object, emoji: str | EmojiKey) -> RuleOutcome:
        key = str(message_id)
        wanted = parse_emoji(emoji)
        async with self._lock:
            rules = self._index.get(key)
            if not rules or wanted is None:
                return RuleOutcome.NO_SUCH_MAPPING
            remaining = [rule for rule in rules if rule.emoji != wanted]
            if len(remaining) == len(rules):
                return RuleOutcome.NO_SUCH_MAPPING
            if remaining:
                self._index[key] = remaining
            else:
                del self._index[key]
        log.info(
            "reaction-role mapping removed",
            extra={"message_id": key, "emoji": wanted.key, "removed": len(rules) - len(remaining)},
        )
        await self._persist()
        return RuleOutcome.REMOVED

    async def on_message_deleted(self, message_id: object) -> bool:
        key = str(message_id)
        async with self._lock:
            if self._index.pop(key, None) is None:
                return False
        log.info("mappings dropped for deleted message", extra={"message_id": key})
        await self._persist()
        return True

    async def on_role_deleted(self, role_id: object) -> bool:
        role = str(role_id)
        async with self._lock:
            changed = False
            for message_id in list(self._index):
                rules = self._index[message_id]
                remaining = [rule for rule in rules if not rule.references_role(role)]
                if len(remaining) == len(rules):
                    continue
                changed = True
                if remaining:
                    self._index[message_id] = remaining
                else:
                    del self._index[message_id]
            if not changed:
                return False
        log.info("mappings cleaned for deleted role", extra={"role_id": role})
        await self._persist()
        return True

    async def _persist(self) -> None:
        # Snapshot once the save slot is ours so a later save never writes older state.
        async with self._save_lock:
            await self._documents.save(self.DOCUMENT, self.snapshot())
