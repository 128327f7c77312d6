"""Durable key-value storage for outbound queues."""

from pathlib import Path
import os
import sys
import tempfile
from typing import Protocol

# Cross-platform file locking
if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

from telemetry_emitter.output import warn

QUEUE_KEY_PREFIX = "telemetryOutQueue"


def _lock_file(file_handle) -> None:
    """Acquire exclusive lock on file (cross-platform)."""
    if sys.platform == "win32":
        msvcrt.locking(file_handle.fileno(), msvcrt.LK_LOCK, 1)
    else:
        fcntl.flock(file_handle.fileno(), fcntl.LOCK_EX)


def _unlock_file(file_handle) -> None:
    """Release lock on file (cross-platform)."""
    if sys.platform == "win32":
        msvcrt.locking(file_handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(file_handle.fileno(), fcntl.LOCK_UN)


def get_queue_key(instance_id: str, namespace: str) -> str:
    """Storage key owned by one queue instance."""
    return "_".join([QUEUE_KEY_PREFIX, instance_id, namespace])


def get_default_queue_dir() -> Path:
    """Default directory for file-backed queues."""
    return Path.home() / ".telemetry-emitter" / "queues"


class QueueStorage(Protocol):
    """
    Storage used by DeliveryQueue.

    Failures are results, not exceptions: read() returns None when nothing
    usable is stored and write() returns False when the value was not saved.
    """

    def read(self, key: str) -> str | None:
        ...

    def write(self, key: str, value: str) -> bool:
        ...


class MemoryStorage:
    """
    Dict-backed storage.

    Args:
        quota: Maximum stored characters per key; larger writes fail
    """

    def __init__(self, quota: int | None = None) -> None:
        self.quota = quota
        self.items: dict[str, str] = {}

    def read(self, key: str) -> str | None:
        return self.items.get(key)

    def write(self, key: str, value: str) -> bool:
        if self.quota is not None and len(value) > self.quota:
            warn(f"Storage quota exceeded for {key} ({len(value)} > {self.quota} chars)")
            return False
        self.items[key] = value
        return True


class FileStorage:
    """
    One JSON file per key under a root directory.

    Writers hold an exclusive lock on <key>.lock while they write a uniquely
    named temp file and rename it over the target, so readers never see a
    partial value and concurrent writers never share a temp file.
    """

    def __init__(self, root: Path | None = None) -> None:
        self.root = Path(root) if root is not None else get_default_queue_dir()

    def path_for(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def read(self, key: str) -> str | None:
        """
        Read the stored value.

        Returns:
            Stored text, or None if missing or unreadable
        """
        path = self.path_for(key)

        if not path.exists():
            return None

        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            warn(f"Failed to read queue file {path}: {e}")
            return None

    def write(self, key: str, value: str) -> bool:
        """
        Atomically replace the stored value.

        Returns:
            True if the value reached disk, False otherwise
        """
        path = self.path_for(key)
        temp_path: Path | None = None

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path.with_suffix(".lock"), "a", encoding="utf-8") as lock:
                _lock_file(lock)
                try:
                    with tempfile.NamedTemporaryFile(
                        "w",
                        encoding="utf-8",
                        dir=path.parent,
                        prefix=f".{key}.",
                        suffix=".tmp",
                        delete=False,
                    ) as f:
                        temp_path = Path(f.name)
                        f.write(value)
                        f.flush()
                        os.fsync(f.fileno())
                    temp_path.replace(path)
                finally:
                    _unlock_file(lock)
        except OSError as e:
            warn(f"Cannot write queue file {path}: {e}")
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            return False

        # Set file permissions to 0600 (owner read/write only)
        try:
            path.chmod(0o600)
        except PermissionError:
            warn(f"Could not set permissions on {path} (continuing)")

        return True
