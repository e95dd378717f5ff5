from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta

MS_PER_HOUR = 3600000


@dataclass
class ReportSummary:
    """Headline numbers for the reports line under the timers."""
    days: int
    total_hours: float = 0.0
    daily_average_hours: float = 0.0
    today_hours: float = 0.0
    by_project: list[tuple[str, float]] = field(default_factory=list)

    def describe(self):
        return (f"Last {self.days} days: {self.total_hours:.1f}h "
                f"(avg {self.daily_average_hours:.1f}h/day) | Today: {self.today_hours:.1f}h")


# Summarizes history over the last `days` days, counting each entry on the local day it ended.
def summarize(entries, now, days=7):
    today = now.date()
    window_start = today - timedelta(days=days - 1)

    total_ms = 0
    today_ms = 0
    active_days = set()
    per_project = defaultdict(int)

    for entry in entries:
        day = entry.end_time.astimezone(now.tzinfo).date()
        if day < window_start or day > today:
            continue
        total_ms += entry.total_duration_ms
        per_project[entry.project] += entry.total_duration_ms
        active_days.add(day)
        if day == today:
            today_ms += entry.total_duration_ms

    summary = ReportSummary(days=days)
    summary.total_hours = total_ms / MS_PER_HOUR
    if active_days:
        summary.daily_average_hours = summary.total_hours / len(active_days)
    summary.today_hours = today_ms / MS_PER_HOUR
    summary.by_project = sorted(
        ((project, ms / MS_PER_HOUR) for project, ms in per_project.items()),
        key=lambda item: (-item[1], item[0].lower()),
    )
    return summary
