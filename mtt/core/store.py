"""Crash-safe JSON persistence for the three tracker documents.

Every write goes to a sibling ``.tmp`` file that is flushed and fsynced before
being renamed over the real document, so a reader only ever sees the old or the
new content, never half of either. Writers to the same document are serialized
by a per-document lock; different documents never wait on each other.
"""

import json
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from mtt.common.errors import PersistenceError, ValidationError
from mtt.common.logger import log
from mtt.core.models import DocumentKind, validate_content
from mtt.core.snapshot import SnapshotPolicy
from mtt.util.misc import now_iso

DEFAULT_MAX_PAYLOAD_BYTES = 1048576
DEFAULT_LOCK_TIMEOUT = 5.0
TEMP_SUFFIX = ".tmp"


@dataclass
class Ack:
    """Result of a successful document replace."""
    kind: DocumentKind
    bytes_written: int
    items: int


def serialize(content):
    return json.dumps(content, indent=2, ensure_ascii=False).encode("utf-8")


class DurableStore:
    """Owner of the entries, active-state and suggestions documents.

    Attributes:
        data_dir: Folder holding the three JSON documents
        max_payload_bytes: Cap applied to raw payloads before they're parsed
        lock_timeout: Seconds a writer waits for its document lock
    """

    def __init__(
        self,
        data_dir,
        max_payload_bytes=DEFAULT_MAX_PAYLOAD_BYTES,
        lock_timeout=DEFAULT_LOCK_TIMEOUT,
        snapshot_dir=None,
        snapshot_min_minutes=5,
    ):
        self.data_dir = Path(data_dir)
        self.max_payload_bytes = max_payload_bytes
        self.lock_timeout = lock_timeout
        self._locks = {kind: threading.Lock() for kind in DocumentKind}
        self._snapshots = None
        if snapshot_dir is not None:
            self._snapshots = SnapshotPolicy(Path(snapshot_dir), snapshot_min_minutes)
        self._started = time.monotonic()

    def path(self, kind: DocumentKind) -> Path:
        return self.data_dir / kind.filename

    @contextmanager
    def _locked(self, kind):
        lock = self._locks[kind]
        if not lock.acquire(timeout=self.lock_timeout):
            log.error(f"Timed out after {self.lock_timeout}s waiting for the {kind.value} lock")
            raise PersistenceError("Could not acquire file lock: timeout")
        try:
            yield
        finally:
            lock.release()

    # ------------------------------------------------------------------ #
    #  Startup                                                             #
    # ------------------------------------------------------------------ #

    def initialize(self):
        """Create the data folder and any missing document, and clear leftovers of interrupted writes."""
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Could not create data directory '{self.data_dir}': {e}") from e

        for kind in DocumentKind:
            temp_path = self._temp_path(self.path(kind))
            if temp_path.exists():
                log.warning(f"Removing leftover temp file from an interrupted write: {temp_path}")
                try:
                    temp_path.unlink()
                except OSError as e:
                    raise PersistenceError(f"Could not remove stale temp file '{temp_path}': {e}") from e

            if self.path(kind).exists():
                log.info(f"{kind.label} file already exists at '{self.path(kind)}'")
                continue
            log.info(f"Creating new {kind.label} file at '{self.path(kind)}'")
            with self._locked(kind):
                self._atomic_write(self.path(kind), serialize(kind.default()))

    # ------------------------------------------------------------------ #
    #  Reading                                                             #
    # ------------------------------------------------------------------ #

    def document_exists(self, kind: DocumentKind) -> bool:
        return self.path(kind).exists()

    def read_document(self, kind: DocumentKind):
        """Return the parsed document, or its empty default if it was never written."""
        path = self.path(kind)
        with self._locked(kind):
            try:
                raw = path.read_bytes()
            except FileNotFoundError:
                log.debug(f"No {kind.label} file yet, returning default")
                return kind.default()
            except OSError as e:
                log.error(f"Error reading {kind.label} file '{path}': {e}")
                raise PersistenceError(f"Error reading {kind.label} file: {e}") from e

        try:
            content = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            log.error(f"{kind.label} file '{path}' is not valid JSON: {e}")
            raise PersistenceError(f"{kind.label} file is corrupt: {e}") from e
        return content

    # ------------------------------------------------------------------ #
    #  Writing                                                             #
    # ------------------------------------------------------------------ #

    def write_payload(self, kind: DocumentKind, body: bytes) -> Ack:
        """Network-facing write: size cap first, then JSON parsing, then the validated write."""
        if len(body) > self.max_payload_bytes:
            log.warning(f"Rejected {len(body)} byte {kind.label} payload, cap is {self.max_payload_bytes}")
            raise ValidationError("Payload too large")
        try:
            content = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError("Invalid JSON format") from e
        return self.write_document(kind, content)

    def write_document(self, kind: DocumentKind, content) -> Ack:
        """Validate and atomically replace a document. Nothing is touched if validation fails."""
        validate_content(kind, content)
        data = serialize(content)

        path = self.path(kind)
        with self._locked(kind):
            if kind is DocumentKind.ENTRIES and self._snapshots is not None:
                self._snapshots.maybe_snapshot(path, reason="entries_replace")
            self._atomic_write(path, data)
        log.info(f"Saved {kind.label} ({len(content)} items, {len(data)} bytes)")
        return Ack(kind=kind, bytes_written=len(data), items=len(content))

    @staticmethod
    def _temp_path(path):
        return path.with_name(path.name + TEMP_SUFFIX)

    # Temp file + fsync + rename. Caller must hold the document's lock.
    def _atomic_write(self, path, data):
        temp_path = self._temp_path(path)
        try:
            with open(temp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError as e:
            try:
                if temp_path.exists():
                    temp_path.unlink()
            except OSError:
                log.warning(f"Failed to clean up temp file {temp_path}", exc_info=True)
            log.error(f"Atomic write to '{path}' failed: {e}")
            raise PersistenceError(f"Error writing {path.name}: {e}") from e
        self._fsync_directory(path.parent)
        log.debug(f"File written atomically: {path}")

    # Makes the rename itself durable. Not every platform lets you open a directory, that's fine.
    @staticmethod
    def _fsync_directory(directory):
        if not hasattr(os, "O_DIRECTORY"):
            return
        try:
            fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
        except OSError:
            log.debug(f"Could not open {directory} to fsync it", exc_info=True)
            return
        try:
            os.fsync(fd)
        except OSError:
            log.debug(f"Directory fsync not supported for {directory}", exc_info=True)
        finally:
            os.close(fd)

    # ------------------------------------------------------------------ #
    #  Diagnostics                                                         #
    # ------------------------------------------------------------------ #

    def health(self):
        return {
            "status": "ok",
            "timestamp": now_iso(),
            "uptime": round(time.monotonic() - self._started, 3),
            "dataFiles": {kind.label: self.document_exists(kind) for kind in DocumentKind},
        }
