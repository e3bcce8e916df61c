"""Application runtime scaffolding for the bot process."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from aiohttp import web
from discord.ext import commands

from config.runtime import get_log_level, get_port
from shared import health as healthmod
from shared.config import (
    get_bot_name,
    get_data_dir,
    get_env_name,
    get_github_mirror,
    get_log_channel_id,
    get_owner_id,
)
from shared.logging import get_trace_id, set_trace_id, setup_logging
from shared.storage import DocumentStore, GitHubContentsSink

if TYPE_CHECKING:
    from modules.community.reaction_roles.store import ReactionRoleStore
    from modules.ops.command_permissions import PermissionStore

log = logging.getLogger("rolekeeper.runtime")

_ACTIVE_RUNTIME: "Runtime | None" = None

_STARTED_MONO = time.monotonic()


def uptime_seconds() -> float:
    return max(0.0, time.monotonic() - _STARTED_MONO)


async def create_app(*, runtime: "Runtime | None" = None) -> web.Application:
    """Create and configure the aiohttp application used by the runtime."""

    static_fields = {"env": get_env_name(), "bot": get_bot_name()}
    access_logger = setup_logging(
        level=get_log_level(),
        static_fields=static_fields,
        access_logger_name="aiohttp.access",
    )

    healthmod.set_component("runtime", True)

    @web.middleware
    async def tracing_middleware(
        request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
    ) -> web.StreamResponse:
        trace = set_trace_id()
        started = time.perf_counter()
        status = 500
        try:
            response = await handler(request)
            status = getattr(response, "status", status)
            response.headers["X-Trace-Id"] = trace
            return response
        finally:
            duration_ms = int((time.perf_counter() - started) * 1000)
            access_logger.info(
                "http_request",
                extra={
                    "trace": trace,
                    "path": request.path,
                    "method": request.method,
                    "status": status,
                    "ms": duration_ms,
                },
            )

    app = web.Application(middlewares=[tracing_middleware])

    def _base_payload() -> dict[str, Any]:
        return {
            "bot": get_bot_name(),
            "env": get_env_name(),
            "version": os.getenv("BOT_VERSION", "dev"),
            "uptime_seconds": round(uptime_seconds(), 3),
        }

    async def root(_: web.Request) -> web.Response:
        payload = _base_payload()
        payload.update({"ok": True, "trace": get_trace_id()})
        return web.json_response(payload)

    async def healthz(_: web.Request) -> web.Response:
        payload = _base_payload()
        ready = healthmod.overall_ready()
        payload.update(
            {
                "ok": ready,
                "components": healthmod.components_snapshot(),
                "endpoint": "healthz",
            }
        )
        if runtime is not None:
            payload["mappings"] = runtime.mapping_counts()
        return web.json_response(payload, status=200 if ready else 503)

    app.router.add_get("/", root)
    app.router.add_get("/healthz", healthz)

    return app


def set_active_runtime(runtime: "Runtime | None") -> None:
    """Set the active runtime used by module-level helpers."""

    global _ACTIVE_RUNTIME
    _ACTIVE_RUNTIME = runtime


def get_active_runtime() -> "Runtime | None":
    """Return the active runtime instance if one has been registered."""

    return _ACTIVE_RUNTIME


async def send_log_message(message: str) -> None:
    """Proxy to the active runtime's log channel helper, if available."""

    runtime = get_active_runtime()
    if runtime is None:
        return
    await runtime.send_log_message(message)


def _trim_message(message: str, *, limit: int = 1800) -> str:
    message = message.strip()
    if len(message) <= limit:
        return message
    return f"{message[: limit - 1]}…"


def build_document_store() -> DocumentStore:
    """Return the document store for ``DATA_DIR`` with the optional GitHub mirror."""

    settings = get_github_mirror()
    sink = GitHubContentsSink.from_settings(settings) if settings is not None else None
    if sink is None:
        log.info("document mirror disabled; set GITHUB_TOKEN, GITHUB_OWNER and GITHUB_REPO to enable")
    else:
        log.info("document mirror enabled", extra={"target": repr(sink)})
    return DocumentStore(get_data_dir(), sink=sink)


class Runtime:
    """Container object that wires the bot, stores and health server."""

    def __init__(self, bot: commands.Bot, *, documents: DocumentStore | None = None) -> None:
        from modules.community.reaction_roles.store import ReactionRoleStore
        from modules.ops.command_permissions import PermissionStore

        self.bot = bot
        self.documents = documents or build_document_store()
        self.permissions: PermissionStore = PermissionStore(self.documents, owner_id=get_owner_id())
        self.reaction_roles: ReactionRoleStore = ReactionRoleStore(self.documents)
        self._web_app: Optional[web.Application] = None
        self._web_runner: Optional[web.AppRunner] = None
        self._web_site: Optional[web.TCPSite] = None
        set_active_runtime(self)

    def mapping_counts(self) -> dict[str, int]:
        return {
            "reaction_role_messages": len(self.reaction_roles),
            "permission_commands": len(self.permissions.list_all()),
        }

    async def load_stores(self) -> None:
        await asyncio.gather(self.permissions.load(), self.reaction_roles.load())
        healthmod.set_component("storage", True)
        if self.permissions.owner_id is None:
            log.warning("OWNER_ID is not set; only permit-listed roles can run commands")

    async def start_webserver(self, *, port: Optional[int] = None) -> None:
        if self._web_site is not None:
            return
        port = port or get_port()

        app = await create_app(runtime=self)
        self._web_app = app
        self._web_runner = web.AppRunner(app)
        await self._web_runner.setup()
        self._web_site = web.TCPSite(self._web_runner, host="0.0.0.0", port=port)
        await self._web_site.start()
        log.info("web server listening", extra={"port": port})

    async def shutdown_webserver(self) -> None:
        site, runner = self._web_site, self._web_runner
        self._web_site = None
        self._web_runner = None
        self._web_app = None
        if site is not None:
            await site.stop()
        if runner is not None:
            await runner.cleanup()

    async def send_log_message(self, message: str) -> None:
        channel_id = get_log_channel_id()
        if not channel_id:
            return
        content = _trim_message(str(message))
        if not content:
            return
        await self.bot.wait_until_ready()
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(channel_id)
            except Exception:
                log.exception("failed to fetch log channel", extra={"channel_id": channel_id})
                return
        try:
            await channel.send(content)
        except Exception:
            log.exception("failed to send log message", extra={"channel_id": channel_id})

    async def load_extensions(self) -> None:
        """Load all feature modules into the shared bot instance."""

        from cogs import app_admin
        from modules.community import COMMUNITY_EXTENSIONS

        await app_admin.setup(self.bot)
        for ext in COMMUNITY_EXTENSIONS:
            try:
                await self.bot.load_extension(ext)
            except Exception as exc:
                log.exception("feature module load failed", extra={"feature_module": ext})
                raise RuntimeError(f"failed to load {ext}") from exc
            log.info("feature module loaded", extra={"feature_module": ext})

    async def start(self, token: str) -> None:
        await self.start_webserver()
        await self.load_stores()
        await self.load_extensions()
        await self.bot.start(token)

    async def close(self) -> None:
        await self.shutdown_webserver()
        if not self.bot.is_closed():
            await self.bot.close()
        set_active_runtime(None)
