"""
File storage primitives shared by the queue, chain and metadata stores.

Provides:
- The on-disk layout under a single base directory
- Atomic whole-file writes (temp file in the same directory, then os.replace)
- Cross-process advisory locks via fcntl.flock on per-resource lock files

Blocking file work runs in a worker thread. Each critical section (acquire
lock, read, modify, write, release) is a single thread call, so a caller
cancelled while waiting never leaves the lock held: the thread finishes
and releases it on its own.
"""

import asyncio
import fcntl
import logging
import os
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, TypeVar

from chain_engine.config import StorageSettings
from chain_engine.core.errors import CoordinationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FileStorage:
    """
    Storage handle created once per process and passed to every store.

    Layout:
        <base>/queue                         newline-delimited chain ids
        <base>/queue.inflight                dequeued, not yet acknowledged
        <base>/chains/<id>.json              chain definitions
        <base>/metadata/tasks/<id>.json      one-time task metadata
        <base>/metadata/periodic/<id>.json   periodic task metadata
        <base>/migration_flag                set once migration completes
        <base>/.locks/<name>.lock            lock files
    """

    RECORD_SUFFIX = ".json"

    def __init__(self, settings: StorageSettings):
        self.settings = settings
        self.base_dir = Path(settings.base_dir)

        self.queue_path = self.base_dir / "queue"
        self.in_flight_path = self.base_dir / "queue.inflight"
        self.chains_dir = self.base_dir / "chains"
        self.tasks_dir = self.base_dir / "metadata" / "tasks"
        self.periodic_dir = self.base_dir / "metadata" / "periodic"
        self.flag_path = self.base_dir / "migration_flag"
        self.lock_dir = self.base_dir / ".locks"

        self.ensure_layout()

    def ensure_layout(self) -> None:
        """Ensure all required directories exist."""
        try:
            for directory in (self.chains_dir, self.tasks_dir, self.periodic_dir, self.lock_dir):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CoordinationError(f"Cannot create storage layout under {self.base_dir}: {e}") from e

    def record_path(self, directory: Path, record_id: str) -> Path:
        return directory / f"{record_id}{self.RECORD_SUFFIX}"

    def list_record_ids(self, directory: Path) -> list[str]:
        """Ids of every record file in directory, oldest first by name."""
        return sorted(
            path.stem
            for path in directory.glob(f"*{self.RECORD_SUFFIX}")
            if not path.name.startswith(".")
        )

    # ==================== Coordination ====================

    @contextmanager
    def hold_lock(self, name: str, shared: bool = False) -> Iterator[None]:
        """
        Hold the named cross-process lock (blocking, call from a thread).

        Writers take it exclusively. Readers take it shared so they can
        run alongside each other.

        Raises:
            CoordinationError: If the lock cannot be opened or is not
                acquired within lock_timeout
        """
        path = self.lock_dir / f"{name}.lock"
        operation = fcntl.LOCK_SH if shared else fcntl.LOCK_EX
        deadline = time.monotonic() + self.settings.lock_timeout

        try:
            handle = open(path, "a", encoding="utf-8")
        except OSError as e:
            raise CoordinationError(f"Cannot open lock file {path}: {e}") from e

        try:
            while True:
                try:
                    fcntl.flock(handle.fileno(), operation | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise CoordinationError(
                            f"Timed out after {self.settings.lock_timeout}s waiting for {path}"
                        )
                    time.sleep(self.settings.lock_poll_interval)
                except OSError as e:
                    raise CoordinationError(f"Cannot lock {path}: {e}") from e

            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()

    async def run_locked(
        self,
        name: str,
        fn: Callable[..., T],
        *args: Any,
        shared: bool = False,
    ) -> T:
        """
        Run fn(*args) in a worker thread while holding the named lock.

        OSError raised by fn is reported as CoordinationError; other
        exceptions propagate unchanged.
        """
        def critical_section() -> T:
            with self.hold_lock(name, shared=shared):
                try:
                    return fn(*args)
                except OSError as e:
                    raise CoordinationError(f"Storage I/O failed under lock {name}: {e}") from e

        return await asyncio.to_thread(critical_section)

    # ==================== File primitives (thread side) ====================

    @staticmethod
    def write_atomic(path: Path, content: str) -> None:
        """Replace path with content so readers see old or new, never a mix."""
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    @staticmethod
    def read_text(path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    @staticmethod
    def remove(path: Path) -> bool:
        """Delete path if present. Returns whether anything was removed."""
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    @classmethod
    def read_lines(cls, path: Path) -> list[str]:
        content = cls.read_text(path)
        if not content:
            return []
        return [line.strip() for line in content.splitlines() if line.strip()]

    @classmethod
    def write_lines(cls, path: Path, lines: list[str]) -> None:
        cls.write_atomic(path, "".join(f"{line}\n" for line in lines))
