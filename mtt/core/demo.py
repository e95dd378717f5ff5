import random
from datetime import timedelta
from mtt.core.models import HistoricalEntry
from mtt.util.misc import round_seconds

# Projects with their share of the day and min/max hours per day.
DEMO_PROJECTS = [
    ("Work", 0.45, 6, 10, ["Coding", "Meetings", "Code Review", "Email"]),
    ("Personal", 0.25, 2, 5, ["Errands", "Planning"]),
    ("Learning", 0.20, 1, 4, ["Tutorial Videos", "Reading"]),
    ("Exercise", 0.10, 0.5, 2, ["Running", "Gym"]),
]

# Generates realistic-looking history for trying out the app and its reports: weekday/weekend rhythm, a busy
# Thursday, the odd skipped day. Entries end in the evening of their day, oldest first.
def generate_demo_entries(now, days_back=84, rng=None):
    rng = rng or random.Random()
    entries = []
    for days_ago in range(days_back, -1, -1):
        day_end = (now - timedelta(days=days_ago)).replace(hour=18, minute=0, second=0, microsecond=0)
        if day_end > now:
            day_end = now
        if rng.random() < 0.05:
            continue
        weekday = day_end.weekday()
        multiplier = 0.6 if weekday >= 5 else (1.3 if weekday == 3 else 1.0)

        for project, weight, daily_min, daily_max, tasks in DEMO_PROJECTS:
            if rng.random() < 0.15:
                continue
            base = weight * (daily_min + daily_max) / 2
            variance = (rng.random() - 0.5) * (daily_max - daily_min) * 0.5
            hours = max(daily_min * weight, min(daily_max, (base + variance) * multiplier))
            total_ms = int(hours * 3600000)
            if round_seconds(total_ms) == 0:
                continue
            end_time = day_end - timedelta(minutes=rng.randint(0, 240))
            entries.append(HistoricalEntry(
                project=project,
                task=rng.choice(tasks),
                total_duration_ms=total_ms,
                duration_seconds=round_seconds(total_ms),
                end_time=end_time,
                created_at=end_time - timedelta(milliseconds=total_ms),
                notes="",
            ))
    return entries
