"""Client-side owner of the session: active timers, history and suggestions.

Every user action goes through the same optimistic protocol:

1. remember the current aggregate (timers map or entries list),
2. swap in the changed aggregate,
3. push the whole aggregate to the store,
4. keep it on success, or put the remembered value back on failure.

Timers and entries are frozen models and aggregates are replaced rather than
edited in place, so "put it back" restores the exact previous objects.

Results come back as ``SyncResult`` values instead of exceptions, and the view
hears about changes through Qt signals.
"""

import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from PySide6.QtCore import QObject, Signal

from mtt.common.errors import MtttError, ValidationError
from mtt.common.logger import log
from mtt.core.models import (
    ActiveTimer,
    DocumentKind,
    HistoricalEntry,
    entries_to_json,
    timers_to_json,
    validate_content,
)
from mtt.core.timer_state import finalize_timer, new_timer, pause_timer, resume_timer, toggle_timer
from mtt.util.misc import format_time, now_local, parse_topic, running_key, sanitize_input, sanitize_notes

BUSY_MESSAGE = "Another change is still being saved"

# Plain-language description of each operation, used in failure notifications.
_FAILED_ACTION = {
    "start": "start timer",
    "pause": "pause timer",
    "resume": "resume timer",
    "toggle": "update timer",
    "stop": "save finished timer",
    "delete": "delete timer",
    "notes": "save notes",
}


@dataclass
class SyncResult:
    """Outcome of one synchronized mutation."""
    ok: bool
    operation: str
    error: Optional[str] = None
    timer_id: Optional[str] = None
    entry: Optional[HistoricalEntry] = None
    discarded: bool = False

    def __bool__(self):
        return self.ok

    @classmethod
    def success(cls, operation, **kwargs):
        return cls(ok=True, operation=operation, **kwargs)

    @classmethod
    def failure(cls, operation, error, **kwargs):
        return cls(ok=False, operation=operation, error=error, **kwargs)


@dataclass
class SessionState:
    """Everything the session holds in memory. Only the synchronizer writes to it."""
    active_timers: dict[str, ActiveTimer] = field(default_factory=dict)
    historical_entries: list[HistoricalEntry] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    def has_running_timers(self):
        return any(timer.is_running for timer in self.active_timers.values())


def _new_id():
    return str(uuid.uuid4())


class SessionSynchronizer(QObject):
    """Applies timer transitions and mirrors them to the store.

    Signals:
        state_changed: in-memory state changed (committed or rolled back), re-render
        notify: (message, level) for the user, level is "info", "success" or "error"
        busy_changed: True while a mutation is waiting on the store
    """

    state_changed = Signal()
    notify = Signal(str, str)
    busy_changed = Signal(bool)

    def __init__(
        self,
        client,
        state: Optional[SessionState] = None,
        clock: Callable = now_local,
        id_factory: Callable[[], str] = _new_id,
        parent=None,
    ):
        super().__init__(parent)
        self.client = client
        self.state = state if state is not None else SessionState()
        self._clock = clock
        self._id_factory = id_factory
        self._busy = False

    # ------------------------------------------------------------------ #
    #  Startup                                                             #
    # ------------------------------------------------------------------ #

    def load(self):
        """Pull all three documents from the store.

        Suggestions and active timers fall back to empty on failure. Entries
        don't: history is the record of truth, so a failed read propagates.
        """
        try:
            suggestions = self.client.fetch_suggestions()
            validate_content(DocumentKind.SUGGESTIONS, suggestions)
        except MtttError as e:
            log.warning(f"Could not load suggestions, continuing without them: {e}")
            suggestions = []

        try:
            entries = validate_content(DocumentKind.ENTRIES, self.client.fetch_entries())
        except MtttError as e:
            log.error(f"FATAL: could not load historical entries: {e}")
            raise

        restored = True
        try:
            timers = validate_content(DocumentKind.ACTIVE_STATE, self.client.fetch_active_state())
        except MtttError as e:
            log.warning(f"Could not load active state, starting fresh: {e}")
            timers = {}
            restored = False

        self.state.suggestions = list(suggestions)
        self.state.historical_entries = list(entries)
        self.state.active_timers = dict(timers)
        log.info(f"Loaded session: {len(entries)} entries, {len(timers)} active timers, {len(suggestions)} suggestions")
        self.state_changed.emit()
        if not restored:
            self.notify.emit("Could not restore previous session. Starting fresh.", "info")

    # ------------------------------------------------------------------ #
    #  Read helpers for the view                                           #
    # ------------------------------------------------------------------ #

    @property
    def busy(self):
        return self._busy

    def now(self):
        return self._clock()

    def timer(self, timer_id) -> Optional[ActiveTimer]:
        return self.state.active_timers.get(timer_id)

    def elapsed_ms(self, timer_id, now=None):
        timer = self.state.active_timers.get(timer_id)
        if timer is None:
            return 0
        return timer.elapsed_ms(now or self._clock())

    def has_running_timers(self):
        return self.state.has_running_timers()

    def suggestion_options(self):
        """Predefined suggestions followed by every topic seen in history, without repeats."""
        options = list(dict.fromkeys(self.state.suggestions))
        seen = set(options)
        for entry in self.state.historical_entries:
            if not entry.project or not entry.task:
                continue
            topic = entry.topic
            if topic not in seen:
                seen.add(topic)
                options.append(topic)
        return options

    # ------------------------------------------------------------------ #
    #  Transitions                                                         #
    # ------------------------------------------------------------------ #

    def start(self, topic):
        """Start a timer from a single "Project / Task" input."""
        parsed = parse_topic(topic)
        if parsed is None:
            return SyncResult.failure("start", "Please enter or select a Project / Task.")
        return self.start_timer(*parsed)

    def start_timer(self, project, task, notes=""):
        return self._exclusive("start", lambda: self._start(project, task, notes))

    def pause(self, timer_id):
        return self._exclusive("pause", lambda: self._transition("pause", timer_id, pause_timer))

    def resume(self, timer_id):
        return self._exclusive("resume", lambda: self._transition("resume", timer_id, resume_timer))

    def toggle(self, timer_id):
        return self._exclusive("toggle", lambda: self._transition("toggle", timer_id, toggle_timer))

    def stop(self, timer_id):
        return self._exclusive("stop", lambda: self._stop(timer_id))

    def delete(self, timer_id):
        return self._exclusive("delete", lambda: self._delete(timer_id))

    def update_notes(self, timer_id, notes):
        return self._exclusive("notes", lambda: self._update_notes(timer_id, notes))

    # ------------------------------------------------------------------ #
    #  Internals                                                           #
    # ------------------------------------------------------------------ #

    # Runs one mutation with the busy flag held. A second mutation while one is outstanding is refused rather
    # than queued, and validation errors come back as failed results without touching anything.
    def _exclusive(self, operation, body):
        if self._busy:
            log.debug(f"Refused '{operation}' while another change is outstanding")
            return SyncResult.failure(operation, BUSY_MESSAGE)
        self._set_busy(True)
        try:
            return body()
        except ValidationError as e:
            log.info(f"Rejected '{operation}': {e}")
            return SyncResult.failure(operation, str(e))
        finally:
            self._set_busy(False)

    def _set_busy(self, busy):
        self._busy = busy
        self.busy_changed.emit(busy)

    def _require(self, timer_id):
        timer = self.state.active_timers.get(timer_id)
        if timer is None:
            raise ValidationError(f"No active timer with id {timer_id}")
        return timer

    def _push_active(self):
        try:
            self.client.replace_active_state(timers_to_json(self.state.active_timers))
        except MtttError as e:
            return str(e)
        return None

    def _push_entries(self):
        try:
            self.client.replace_entries(entries_to_json(self.state.historical_entries))
        except MtttError as e:
            return str(e)
        return None

    def _fail(self, operation, error, timer_id=None):
        log.error(f"Failed to {_FAILED_ACTION[operation]} ({timer_id}): {error}")
        self.state_changed.emit()
        self.notify.emit(f"Failed to {_FAILED_ACTION[operation]}: {error}", "error")
        return SyncResult.failure(operation, error, timer_id=timer_id)

    # Replaces the active map, pushes it and either keeps the change or restores the previous map.
    def _commit_active(self, operation, new_timers, timer_id):
        previous = self.state.active_timers
        self.state.active_timers = new_timers
        error = self._push_active()
        if error is not None:
            self.state.active_timers = previous
            return self._fail(operation, error, timer_id)
        self.state_changed.emit()
        return SyncResult.success(operation, timer_id=timer_id)

    def _start(self, project, task, notes):
        project = sanitize_input(project)
        task = sanitize_input(task)
        if not project or not task:
            raise ValidationError("Please enter or select a Project / Task.")
        key = running_key(project, task)
        if any(running_key(t.project, t.task) == key for t in self.state.active_timers.values()):
            raise ValidationError(f'The task "{project} / {task}" is already running.')

        timer_id = self._id_factory()
        if timer_id in self.state.active_timers:
            raise ValidationError(f"Timer id {timer_id} is already in use")
        timers = dict(self.state.active_timers)
        timers[timer_id] = new_timer(project, task, self._clock(), notes=sanitize_notes(notes))
        result = self._commit_active("start", timers, timer_id)
        if result:
            log.info(f"Started timer '{project} / {task}' ({timer_id})")
        return result

    def _transition(self, operation, timer_id, transition):
        timer = self._require(timer_id)
        timers = dict(self.state.active_timers)
        timers[timer_id] = transition(timer, self._clock())
        return self._commit_active(operation, timers, timer_id)

    def _delete(self, timer_id):
        self._require(timer_id)
        timers = dict(self.state.active_timers)
        del timers[timer_id]
        result = self._commit_active("delete", timers, timer_id)
        if result:
            log.info(f"Deleted timer {timer_id}")
        return result

    def _update_notes(self, timer_id, notes):
        timer = self._require(timer_id)
        notes = sanitize_notes(notes)
        if notes == timer.notes:
            return SyncResult.success("notes", timer_id=timer_id)
        timers = dict(self.state.active_timers)
        timers[timer_id] = timer.model_copy(update={"notes": notes})
        return self._commit_active("notes", timers, timer_id)

    # Stop writes two documents. The active map goes first, then history. If either write fails both in-memory
    # aggregates go back to what they were, and if history was the one that failed the old active map is
    # written back too so the disk doesn't keep a removed timer without its entry.
    def _stop(self, timer_id):
        timer = self._require(timer_id)
        entry = finalize_timer(timer, self._clock())

        previous_timers = self.state.active_timers
        previous_entries = self.state.historical_entries
        timers = dict(previous_timers)
        del timers[timer_id]

        if entry is None:
            result = self._commit_active("stop", timers, timer_id)
            if not result:
                return result
            self.notify.emit("Task of zero duration was discarded.", "info")
            return SyncResult.success("stop", timer_id=timer_id, discarded=True)

        self.state.active_timers = timers
        self.state.historical_entries = previous_entries + [entry]

        error = self._push_active()
        if error is not None:
            self.state.active_timers = previous_timers
            self.state.historical_entries = previous_entries
            return self._fail("stop", error, timer_id)

        error = self._push_entries()
        if error is not None:
            self.state.active_timers = previous_timers
            self.state.historical_entries = previous_entries
            compensation_error = self._push_active()
            if compensation_error is not None:
                log.error(f"Could not restore active state after failed history write: {compensation_error}")
                error += ". The saved timers may be out of date; reload before continuing."
            return self._fail("stop", error, timer_id)

        log.info(f"Stopped timer '{timer.project} / {timer.task}' after {entry.duration_seconds}s")
        self.state_changed.emit()
        self.notify.emit(
            f"Saved {entry.project} / {entry.task} ({format_time(entry.duration_seconds)})", "success")
        return SyncResult.success("stop", timer_id=timer_id, entry=entry)
