import json
import os
import time
from datetime import datetime
from mtt.common.logger import log

# Exponential-ish time-tier targets in seconds.  For each tier we keep the snapshot whose
# timestamp is closest to (now - tier).
TIERS = [
    5 * 60,       # ~5 minutes ago
    10 * 60,      # ~10 minutes ago
    20 * 60,      # ~20 minutes ago
    60 * 60,      # ~1 hour ago
    6 * 3600,     # ~6 hours ago
    24 * 3600,    # ~1 day ago
    2 * 86400,    # ~2 days ago
    4 * 86400,    # ~4 days ago
]

SNAPSHOT_PREFIX = "entries_"
_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"

# Writes a copy of the given entries document (as raw bytes, so it's exactly what was on disk) into the
# snapshot folder.
def create_snapshot(snapshot_dir, content_bytes, reason):
    snapshot_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime(_TIMESTAMP_FORMAT)
    target_path = snapshot_dir / f"{SNAPSHOT_PREFIX}{timestamp}.json"
    with open(target_path, "wb") as f:
        f.write(content_bytes)
    log.debug(f"Saved entries snapshot for reason '{reason}' to {target_path}")
    return target_path

# Extracts and returns the datetime from a given snapshot's filename, such as
# entries_20260212_140311_123456.json -> 2/12/2026, 2:03PM, 11.123456 seconds
def _parse_snapshot_time(filename):
    base = os.path.splitext(filename)[0]
    if not base.startswith(SNAPSHOT_PREFIX):
        return None
    try:
        return datetime.strptime(base[len(SNAPSHOT_PREFIX):], _TIMESTAMP_FORMAT)
    except ValueError:
        return None

# Returns (filename, datetime) for every snapshot in the folder, newest first.
def list_snapshots(snapshot_dir):
    if not snapshot_dir.is_dir():
        return []
    entries = []
    for path in snapshot_dir.iterdir():
        if not path.name.endswith(".json"):
            continue
        ts = _parse_snapshot_time(path.name)
        if ts is not None:
            entries.append((path.name, ts))
    entries.sort(key=lambda e: e[1], reverse=True)
    return entries

# Use time-tier retention to remove all snapshots that don't best fit any tier. The newest snapshot is always kept.
# We then calculate which snapshot is closest to each tier in TIERS, and delete everything else.
def prune_snapshots(snapshot_dir, now=None):
    entries = list_snapshots(snapshot_dir)

    # This means there isn't anything to prune yet.
    if len(entries) <= 1:
        return 0

    now = now or datetime.now()
    keep = {entries[0][0]}

    # For each tier, find closest snapshot
    for tier_secs in TIERS:
        target = now.timestamp() - tier_secs
        best = min(entries, key=lambda e: abs(e[1].timestamp() - target))
        keep.add(best[0])

    # Delete everything not in the keep set
    pruned_count = 0
    for filename, _ in entries:
        if filename not in keep:
            try:
                os.remove(snapshot_dir / filename)
                pruned_count += 1
            except OSError:
                log.warning(f"Could not remove old snapshot '{filename}'", exc_info=True)
    if pruned_count > 0:
        log.info(f"Pruned {pruned_count} files from '{snapshot_dir}'")
    return pruned_count


# Decides when the store should take another entries snapshot. Only gates on the minimum interval, it
# doesn't write anything itself.
class SnapshotPolicy:

    def __init__(self, snapshot_dir, min_minutes=5, clock=time.monotonic):
        self.snapshot_dir = snapshot_dir
        self.min_interval = max(0, min_minutes) * 60
        self._clock = clock
        self._last_snapshot = None

    def due(self):
        if self._last_snapshot is None:
            return True
        return self._clock() - self._last_snapshot >= self.min_interval

    # Snapshot the current on-disk entries if due. Failures are logged, never raised, a missed backup must
    # not block the real write.
    def maybe_snapshot(self, current_path, reason):
        if not self.due() or not current_path.exists():
            return None
        try:
            created = create_snapshot(self.snapshot_dir, current_path.read_bytes(), reason)
            self._last_snapshot = self._clock()
            prune_snapshots(self.snapshot_dir)
            return created
        except OSError:
            log.warning(f"Failed to snapshot '{current_path}' before overwrite", exc_info=True)
            return None
