from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, NamedTuple, Optional, Sequence

import discord

from shared.logfmt import channel_label

log = logging.getLogger("rolekeeper.housekeeping.cleanup")

FOURTEEN_DAYS = timedelta(days=14)
BULK_LIMIT = 100
INDIVIDUAL_DELETE_PAUSE = 0.25


class ClearResult(NamedTuple):
    deleted: int
    failed: int


def parse_clear_count(raw: object) -> int | str | None:
    """Return ``"all"``, a positive count, or ``None`` when ``raw`` is invalid."""

    text = str(raw or "").strip().lower()
    if text == "all":
        return "all"
    try:
        value = int(text)
    except ValueError:
        return None
    return value if value > 0 else None


def _normalize_timestamp(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _partition_messages(
    messages: Sequence[discord.Message], *, reference: datetime
) -> tuple[list[discord.Message], list[discord.Message]]:
    recent: list[discord.Message] = []
    older: list[discord.Message] = []
    for message in messages:
        created = _normalize_timestamp(message.created_at)
        if created is None:
            recent.append(message)
            continue
        if reference - created >= FOURTEEN_DAYS:
            older.append(message)
        else:
            recent.append(message)
    return recent, older


def _chunk_messages(items: Sequence[discord.Message], size: int = BULK_LIMIT) -> Iterable[list[discord.Message]]:
    for index in range(0, len(items), size):
        yield list(items[index : index + size])


async def _delete_individual(
    messages: Sequence[discord.Message],
    *,
    reason: str,
    pause: float,
    logger: logging.Logger,
) -> tuple[int, int]:
    deleted = 0
    errors = 0
    for message in messages:
        try:
            await message.delete(reason=reason)
        except discord.NotFound:
            continue
        except discord.Forbidden:
            logger.warning(
                f"⚠️ **Cleanup** • reason=missing_permissions • channel_id={message.channel.id}",
                extra={
                    "channel_id": getattr(message.channel, "id", None),
                    "reason": "missing_permissions",
                },
            )
            errors += 1
            break
        except discord.HTTPException as exc:
            logger.warning(
                f"⚠️ **Cleanup** • reason=delete_failed • channel_id={message.channel.id}",
                extra={
                    "channel_id": getattr(message.channel, "id", None),
                    "reason": "delete_failed",
                    "error": str(exc),
                },
            )
            errors += 1
        else:
            deleted += 1
        if pause > 0:
            await asyncio.sleep(pause)
    return deleted, errors


async def _purge_batch(
    channel: discord.abc.Messageable,
    messages: Sequence[discord.Message],
    *,
    reason: str,
    pause: float,
    logger: logging.Logger,
) -> tuple[int, int]:
    recent, older = _partition_messages(messages, reference=datetime.now(timezone.utc))
    deleted = 0
    errors = 0

    for batch in _chunk_messages(recent, size=BULK_LIMIT):
        if len(batch) == 1:
            inc_deleted, inc_errors = await _delete_individual(
                batch, reason=reason, pause=0, logger=logger
            )
            deleted += inc_deleted
            errors += inc_errors
            continue
        try:
            await channel.delete_messages(batch, reason=reason)
        except discord.HTTPException as exc:
            label = channel_label(getattr(channel, "guild", None), getattr(channel, "id", None))
            logger.warning(
                f"⚠️ **Cleanup** • reason=bulk_delete_failed • channel={label} • batch={len(batch)}",
                extra={
                    "channel_id": getattr(channel, "id", None),
                    "reason": "bulk_delete_failed",
                    "batch_size": len(batch),
                    "error": str(exc),
                },
            )
            errors += 1
            inc_deleted, inc_errors = await _delete_individual(
                batch, reason=reason, pause=pause, logger=logger
            )
            deleted += inc_deleted
            errors += inc_errors
        else:
            deleted += len(batch)

    if older:
        # Bulk delete rejects messages older than two weeks.
        inc_deleted, inc_errors = await _delete_individual(
            older, reason=reason, pause=pause, logger=logger
        )
        deleted += inc_deleted
        errors += inc_errors

    return deleted, errors


async def clear_messages(
    channel: discord.abc.Messageable,
    *,
    limit: Optional[int] = None,
    exclude_ids: Iterable[int] = (),
    reason: str = "clr command",
    pause: float = INDIVIDUAL_DELETE_PAUSE,
    logger: logging.Logger | None = None,
) -> ClearResult:
    """Delete the newest ``limit`` messages of ``channel`` (all when ``None``).

    Messages are handled a page at a time: those younger than fourteen days go
    through bulk delete in batches of at most 100, older ones are deleted one
    by one with ``pause`` seconds between requests. ``exclude_ids`` are never
    deleted and do not count towards ``limit``.
    """

    logger = logger or log
    excluded = {int(item) for item in exclude_ids}
    deleted = 0
    errors = 0
    selected = 0
    pending: list[discord.Message] = []

    try:
        async for message in channel.history(limit=None):
            if message.id in excluded:
                continue
            pending.append(message)
            selected += 1
            if len(pending) >= BULK_LIMIT:
                inc_deleted, inc_errors = await _purge_batch(
                    channel, pending, reason=reason, pause=pause, logger=logger
                )
                deleted += inc_deleted
                errors += inc_errors
                pending = []
            if limit is not None and selected >= limit:
                break
    except discord.Forbidden:
        logger.warning(
            f"⚠️ **Cleanup** • reason=missing_permissions • channel_id={getattr(channel, 'id', None)}",
            extra={"channel_id": getattr(channel, "id", None), "reason": "missing_permissions"},
        )
        errors += 1
    except discord.HTTPException as exc:
        logger.warning(
            f"⚠️ **Cleanup** • reason=history_failed • channel_id={getattr(channel, 'id', None)}",
            extra={
                "channel_id": getattr(channel, "id", None),
                "reason": "history_failed",
                "error": str(exc),
            },
        )
        errors += 1

    if pending:
        inc_deleted, inc_errors = await _purge_batch(
            channel, pending, reason=reason, pause=pause, logger=logger
        )
        deleted += inc_deleted
        errors += inc_errors

    logger.info(
        "🧹 Cleanup finished",
        extra={"channel_id": getattr(channel, "id", None), "deleted": deleted, "errors": errors},
    )
    return ClearResult(deleted=deleted, failed=errors)


__all__ = [
    "BULK_LIMIT",
    "ClearResult",
    "FOURTEEN_DAYS",
    "clear_messages",
    "parse_clear_count",
]
