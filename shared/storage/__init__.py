"""Document persistence: local JSON files plus an optional remote mirror."""

from __future__ import annotations

from shared.storage.documents import DocumentSink, DocumentStore, MirrorError
from shared.storage.github_mirror import GitHubContentsSink

__all__ = ["DocumentSink", "DocumentStore", "GitHubContentsSink", "MirrorError"]
