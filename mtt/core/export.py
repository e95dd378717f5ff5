import csv
from datetime import date, timezone
from mtt.common.errors import ValidationError
from mtt.common.logger import log

EXPORT_HEADERS = [
    "project",
    "task",
    "endTime",
    "durationSeconds",
    "durationMinutes",
    "totalDurationMs",
    "notes",
]

# Default file name for an export made on the given day.
def default_export_name(day=None):
    day = day or date.today()
    return f"time_tracker_export_{day.isoformat()}.csv"

# Flattens one entry into the export columns. End times are written in UTC.
def _export_row(entry):
    end_time = entry.end_time.astimezone(timezone.utc)
    return {
        "project": entry.project,
        "task": entry.task,
        "endTime": end_time.isoformat(),
        "durationSeconds": entry.duration_seconds,
        "durationMinutes": f"{entry.duration_seconds / 60:.2f}",
        "totalDurationMs": entry.total_duration_ms,
        "notes": entry.notes or "",
    }

# Writes every entry to a CSV at path. Every value is quoted and embedded quotes are doubled.
def export_csv(entries, path):
    if not entries:
        raise ValidationError("No data to export.")
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=EXPORT_HEADERS, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writeheader()
        for entry in entries:
            writer.writerow(_export_row(entry))
    log.info(f"Exported {len(entries)} entries to '{path}'")
    return path
