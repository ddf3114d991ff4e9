"""Recipient -> Linq chat id cache, persisted as one JSON file.

The whole mapping is rewritten on every mutation. Loading degrades to an
empty mapping on a missing or corrupt file; saving is best-effort so an
outbound send never fails only because the cache could not be written.
Threads of one process are serialized by a lock and the file is replaced
atomically; other processes writing the same file race, last write wins.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path

from linqgate.infra.hashing import hash_identifier
from linqgate.observability.logging import get_logger
from linqgate.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_STATE_DIRNAME = ".linqgate"
STORE_RELATIVE_PATH = Path("credentials") / "linq-chats.json"


def resolve_state_dir() -> Path:
    """Private state directory: LINQ_STATE_DIR or ~/.linqgate."""
    override = os.environ.get("LINQ_STATE_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / DEFAULT_STATE_DIRNAME


def default_store_path() -> Path:
    return resolve_state_dir() / STORE_RELATIVE_PATH


class ChatStore:
    """Lazy-loaded recipient -> chat id mapping backed by a JSON file."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path is not None else default_store_path()
        self._cache: dict[str, str] | None = None
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def lookup(self, recipient: str) -> str | None:
        with self._lock:
            return self._load().get(recipient)

    def write(self, recipient: str, chat_id: str) -> None:
        with self._lock:
            store = self._load()
            store[recipient] = chat_id
            self._save(store)

    def delete(self, recipient: str) -> None:
        with self._lock:
            store = self._load()
            store.pop(recipient, None)
            self._save(store)

    def list_all(self) -> dict[str, str]:
        """Copy of every stored mapping."""
        with self._lock:
            return dict(self._load())

    def reset_cache(self) -> None:
        """Drop the in-memory copy; the next access re-reads the file."""
        with self._lock:
            self._cache = None

    def _load(self) -> dict[str, str]:
        if self._cache is not None:
            return self._cache

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raw = {}
        except (OSError, ValueError) as e:
            logger.warning(
                "chat store unreadable, starting empty",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
            raw = {}

        if not isinstance(raw, dict):
            raw = {}
        self._cache = {str(k): str(v) for k, v in raw.items() if isinstance(v, str)}
        return self._cache

    def _save(self, store: dict[str, str]) -> None:
        self._cache = store
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        try:
            payload = json.dumps(dict(store), indent=2)
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self._path)
        except Exception as e:
            logger.warning(
                "chat store save failed",
                extra={
                    "extra_fields": safe_log_context(
                        error_type=type(e).__name__,
                        entries=len(store),
                    )
                },
            )
            return

        logger.debug(
            "chat store saved",
            extra={"extra_fields": safe_log_context(entries=len(store))},
        )


def describe_entry(recipient: str, chat_id: str) -> dict[str, str]:
    """Log-safe view of one mapping."""
    return safe_log_context(to_hash=hash_identifier(recipient), chat_id=chat_id)
