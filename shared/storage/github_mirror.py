"""GitHub contents API sink used to mirror persisted documents."""

from __future__ import annotations

import asyncio
import base64
import logging
import urllib.parse
from typing import Any

import aiohttp

from shared.config import GitHubMirrorSettings
from shared.redaction import sanitize_text
from shared.storage.documents import MirrorError

__all__ = ["GitHubContentsSink"]

log = logging.getLogger("rolekeeper.storage.github")

_API_BASE = "https://api.github.com"
_USER_AGENT = "rolekeeper-sync-bot"
_TIMEOUT = 15


class GitHubContentsSink:
    """Create-or-update a file on a branch through the contents API.

    The write protocol is: read the current file metadata on ``branch`` to get
    its blob ``sha`` (404 means the file does not exist yet), then ``PUT`` the
    base64 content with that ``sha`` so GitHub performs a conditional update.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        *,
        branch: str = "main",
        api_base: str = _API_BASE,
        timeout: float = _TIMEOUT,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self._token = token
        self._api_base = api_base.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @classmethod
    def from_settings(cls, settings: GitHubMirrorSettings, **kwargs: Any) -> "GitHubContentsSink":
        return cls(settings.owner, settings.repo, settings.token, branch=settings.branch, **kwargs)

    def __repr__(self) -> str:
        return f"GitHubContentsSink({self.owner}/{self.repo}@{self.branch})"

    def _url(self, path: str) -> str:
        owner = urllib.parse.quote(self.owner, safe="")
        repo = urllib.parse.quote(self.repo, safe="")
        encoded = urllib.parse.quote(path.lstrip("/"), safe="/")
        return f"{self._api_base}/repos/{owner}/{repo}/contents/{encoded}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"token {self._token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": _USER_AGENT,
        }

    @staticmethod
    async def _error_text(resp: aiohttp.ClientResponse) -> str:
        try:
            text = await resp.text()
        except Exception:
            text = ""
        return str(sanitize_text(" ".join(text.split())))[:300]

    async def _fetch_revision(self, session: aiohttp.ClientSession, path: str) -> str | None:
        async with session.get(self._url(path), params={"ref": self.branch}) as resp:
            if resp.status == 404:
                return None
            if resp.status != 200:
                detail = await self._error_text(resp)
                raise MirrorError(f"Failed to read {path} from GitHub: {resp.status} {detail}")
            try:
                data = await resp.json(content_type=None)
            except ValueError as exc:
                raise MirrorError(f"GitHub returned a non-JSON body for {path}") from exc
        sha = data.get("sha") if isinstance(data, dict) else None
        return str(sha) if sha else None

    async def _put_once(
        self,
        session: aiohttp.ClientSession,
        path: str,
        payload: bytes,
        *,
        sha: str | None,
        message: str,
    ) -> tuple[int, Any]:
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(payload).decode("ascii"),
            "branch": self.branch,
        }
        if sha:
            body["sha"] = sha
        async with session.put(self._url(path), json=body) as resp:
            if 200 <= resp.status < 300:
                try:
                    return resp.status, await resp.json(content_type=None)
                except ValueError as exc:
                    detail = await self._error_text(resp)
                    raise MirrorError(
                        f"GitHub returned {resp.status} with a non-JSON body for {path}: {detail}"
                    ) from exc
            return resp.status, await self._error_text(resp)

    async def put(
        self,
        path: str,
        payload: bytes,
        *,
        revision_hint: str | None = None,
        message: str | None = None,
    ) -> str | None:
        commit_message = message or f"Auto-update {path} by bot"
        try:
            async with aiohttp.ClientSession(
                timeout=self._timeout, headers=self._headers()
            ) as session:
                sha = revision_hint
                if sha is None:
                    sha = await self._fetch_revision(session, path)
                status, data = await self._put_once(
                    session, path, payload, sha=sha, message=commit_message
                )
                if status == 409 and revision_hint is not None:
                    # Someone else moved the file since our last write.
                    log.info("mirror revision stale; refetching", extra={"path": path})
                    sha = await self._fetch_revision(session, path)
                    status, data = await self._put_once(
                        session, path, payload, sha=sha, message=commit_message
                    )
        except asyncio.TimeoutError as exc:
            raise MirrorError(f"GitHub request timed out for {path}") from exc
        except aiohttp.ClientError as exc:
            raise MirrorError(f"GitHub request failed for {path}: {exc}") from exc

        if not 200 <= status < 300:
            raise MirrorError(f"GitHub update failed for {path}: {status} {data}")

        content = data.get("content") if isinstance(data, dict) else None
        new_sha = content.get("sha") if isinstance(content, dict) else None
        return str(new_sha) if new_sha else None
