from datetime import timedelta
from mtt.common.errors import ValidationError
from mtt.common.logger import log
from mtt.core.models import ActiveTimer, HistoricalEntry
from mtt.util.misc import round_seconds

# Transitions for a single timer. Timers are frozen models, so every transition hands back a new object and the
# old one stays untouched for the synchronizer to roll back to.

# Builds a freshly started timer.
def new_timer(project, task, now, notes=""):
    timer = ActiveTimer(
        project=project,
        task=task,
        start_time=now,
        accumulated_ms=0,
        is_paused=False,
        notes=notes,
        created_at=now,
    )
    log.debug(f"Initialized new timer '{project} / {task}' at {now.isoformat()}")
    return timer

# Banks the running time into accumulated_ms and drops the start time.
def pause_timer(timer, now):
    if timer.is_paused:
        raise ValidationError(f"'{timer.project} / {timer.task}' is already paused")
    paused = timer.model_copy(update={
        "accumulated_ms": timer.elapsed_ms(now),
        "start_time": None,
        "is_paused": True,
    })
    log.debug(f"Paused timer '{timer.project} / {timer.task}' with {paused.accumulated_ms}ms banked")
    return paused

# Starts counting again from now. accumulated_ms is left alone until the next pause/stop.
def resume_timer(timer, now):
    if not timer.is_paused:
        raise ValidationError(f"'{timer.project} / {timer.task}' is already running")
    resumed = timer.model_copy(update={"start_time": now, "is_paused": False})
    log.debug(f"Resumed timer '{timer.project} / {timer.task}' at {now.isoformat()}")
    return resumed

def toggle_timer(timer, now):
    return resume_timer(timer, now) if timer.is_paused else pause_timer(timer, now)

# Turns a timer into its history record. Returns None when the total rounds to zero seconds, those get discarded
# instead of cluttering history.
def finalize_timer(timer, now):
    elapsed = timer.elapsed_ms(now)
    seconds = round_seconds(elapsed)
    if seconds == 0:
        log.debug(f"Timer '{timer.project} / {timer.task}' stopped after {elapsed}ms, discarding")
        return None

    created_at = timer.created_at
    if created_at is None:
        # Older active-state files never recorded a creation time
        created_at = now - timedelta(milliseconds=elapsed)
    elif created_at > now:
        created_at = now
    entry = HistoricalEntry(
        project=timer.project,
        task=timer.task,
        total_duration_ms=elapsed,
        duration_seconds=seconds,
        end_time=now,
        created_at=created_at,
        notes=timer.notes,
    )
    log.debug(f"Finalized timer '{timer.project} / {timer.task}' into a {seconds}s entry")
    return entry
