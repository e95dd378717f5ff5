"""Tests for the session synchronizer: transitions, optimistic writes and rollback.

Covers: mtt.core.sync, mtt.core.timer_state
"""

import itertools
import unittest
from datetime import datetime, timedelta, timezone

from PySide6.QtCore import QCoreApplication

from mtt.common.errors import PersistenceError, TransportError
from mtt.core.sync import BUSY_MESSAGE, SessionSynchronizer


def setUpModule():
    global _app
    _app = QCoreApplication.instance() or QCoreApplication([])


class FakeClient:
    """In-memory StoreClient. Method names listed in `fail` raise instead of succeeding."""

    def __init__(self, entries=None, active=None, suggestions=None):
        self.entries = entries if entries is not None else []
        self.active = active if active is not None else {}
        self.suggestions = suggestions if suggestions is not None else []
        self.fail = set()
        self.calls = []

    def _check(self, name):
        if name in self.fail:
            if name.startswith("fetch"):
                raise TransportError("server unreachable")
            raise PersistenceError("disk full")

    def fetch_entries(self):
        self._check("fetch_entries")
        return list(self.entries)

    def fetch_active_state(self):
        self._check("fetch_active_state")
        return dict(self.active)

    def fetch_suggestions(self):
        self._check("fetch_suggestions")
        return list(self.suggestions)

    def replace_entries(self, entries):
        self.calls.append(("entries", entries))
        self._check("replace_entries")
        self.entries = entries

    def replace_active_state(self, timers):
        self.calls.append(("active", timers))
        self._check("replace_active_state")
        self.active = timers


class Clock:
    def __init__(self):
        self.now = datetime(2026, 10, 16, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class SyncTestCase(unittest.TestCase):

    def setUp(self):
        self.client = FakeClient()
        self.clock = Clock()
        counter = itertools.count(1)
        self.sync = SessionSynchronizer(self.client, clock=self.clock, id_factory=lambda: f"timer-{next(counter)}")
        self.notifications = []
        self.sync.notify.connect(lambda message, level: self.notifications.append((message, level)))
        self.renders = []
        self.sync.state_changed.connect(lambda: self.renders.append(True))

    def start(self, topic="Work / Email"):
        result = self.sync.start(topic)
        self.assertTrue(result, result.error)
        return result.timer_id


# ──────────────────────────────────────────────────────────────────────────
# transitions
# ──────────────────────────────────────────────────────────────────────────

class TestTransitions(SyncTestCase):

    def test_start_pushes_running_timer(self):
        timer_id = self.start()
        stored = self.client.active[timer_id]
        self.assertEqual(stored["project"], "Work")
        self.assertEqual(stored["task"], "Email")
        self.assertFalse(stored["isPaused"])
        self.assertEqual(stored["accumulatedMs"], 0)
        self.assertEqual(stored["startTime"], "2026-10-16T09:00:00Z")
        self.assertTrue(self.sync.has_running_timers())

    def test_topic_fallbacks(self):
        timer_id = self.start("Just a project")
        timer = self.sync.timer(timer_id)
        self.assertEqual((timer.project, timer.task), ("Just a project", "Task"))

        timer_id = self.start("/ orphan task")
        timer = self.sync.timer(timer_id)
        self.assertEqual((timer.project, timer.task), ("Uncategorized", "orphan task"))

    def test_empty_topic_rejected_without_write(self):
        result = self.sync.start("   <> ")
        self.assertFalse(result)
        self.assertEqual(result.error, "Please enter or select a Project / Task.")
        self.assertEqual(self.client.calls, [])

    def test_pause_resume_stop_totals(self):
        """5 min running, 10 min paused, 2 min running is 7 minutes of work."""
        timer_id = self.start()
        self.clock.advance(minutes=5)
        self.assertTrue(self.sync.pause(timer_id))
        self.assertEqual(self.client.active[timer_id]["accumulatedMs"], 300000)
        self.assertIsNone(self.client.active[timer_id]["startTime"])

        self.clock.advance(minutes=10)
        self.assertEqual(self.sync.elapsed_ms(timer_id), 300000)
        self.assertTrue(self.sync.resume(timer_id))
        self.clock.advance(minutes=2)

        result = self.sync.stop(timer_id)
        self.assertTrue(result)
        self.assertEqual(result.entry.total_duration_ms, 420000)
        self.assertEqual(result.entry.duration_seconds, 420)
        self.assertEqual(self.client.active, {})
        self.assertEqual(len(self.client.entries), 1)
        self.assertEqual(self.client.entries[0]["durationSeconds"], 420)
        self.assertEqual(self.client.entries[0]["createdAt"], "2026-10-16T09:00:00Z")
        self.assertEqual(self.notifications[-1], ("Saved Work / Email (00:07:00)", "success"))

    def test_no_double_counting_after_resume(self):
        timer_id = self.start()
        self.clock.advance(seconds=90)
        self.sync.pause(timer_id)
        self.clock.advance(hours=3)
        self.sync.resume(timer_id)
        self.clock.advance(seconds=30)
        self.assertEqual(self.sync.elapsed_ms(timer_id), 120000)

    def test_toggle_flips_state(self):
        timer_id = self.start()
        self.sync.toggle(timer_id)
        self.assertTrue(self.sync.timer(timer_id).is_paused)
        self.assertFalse(self.sync.has_running_timers())
        self.sync.toggle(timer_id)
        self.assertFalse(self.sync.timer(timer_id).is_paused)

    def test_pausing_paused_timer_is_rejected(self):
        timer_id = self.start()
        self.sync.pause(timer_id)
        calls = len(self.client.calls)
        result = self.sync.pause(timer_id)
        self.assertFalse(result)
        self.assertEqual(len(self.client.calls), calls)

    def test_unknown_timer_is_rejected(self):
        result = self.sync.stop("missing")
        self.assertFalse(result)
        self.assertIn("No active timer", result.error)
        self.assertEqual(self.client.calls, [])

    def test_delete_discards_time(self):
        timer_id = self.start()
        self.clock.advance(minutes=30)
        self.assertTrue(self.sync.delete(timer_id))
        self.assertEqual(self.client.active, {})
        self.assertEqual(self.client.entries, [])

    def test_zero_duration_stop_is_discarded(self):
        timer_id = self.start()
        self.clock.advance(milliseconds=400)
        result = self.sync.stop(timer_id)
        self.assertTrue(result)
        self.assertTrue(result.discarded)
        self.assertIsNone(result.entry)
        self.assertEqual(self.client.active, {})
        self.assertNotIn("entries", [call[0] for call in self.client.calls])
        self.assertEqual(self.notifications[-1], ("Task of zero duration was discarded.", "info"))

    def test_half_second_rounds_up_and_is_kept(self):
        timer_id = self.start()
        self.clock.advance(milliseconds=500)
        result = self.sync.stop(timer_id)
        self.assertEqual(result.entry.duration_seconds, 1)
        self.assertEqual(result.entry.total_duration_ms, 500)

    def test_notes_are_sanitized_and_saved(self):
        timer_id = self.start()
        self.assertTrue(self.sync.update_notes(timer_id, 'Ask <Bob> about "the" plan'))
        self.assertEqual(self.client.active[timer_id]["notes"], "Ask Bob about the plan")

        # Same notes again doesn't hit the store
        calls = len(self.client.calls)
        self.sync.update_notes(timer_id, "Ask Bob about the plan")
        self.assertEqual(len(self.client.calls), calls)


# ──────────────────────────────────────────────────────────────────────────
# duplicate prevention
# ──────────────────────────────────────────────────────────────────────────

class TestDuplicatePrevention(SyncTestCase):

    def test_case_variant_is_rejected(self):
        self.start("Work / Email")
        result = self.sync.start("work / EMAIL")
        self.assertFalse(result)
        self.assertEqual(result.error, 'The task "work / EMAIL" is already running.')
        self.assertEqual(len(self.sync.state.active_timers), 1)
        self.assertEqual(len(self.client.active), 1)

    def test_whitespace_variant_is_rejected(self):
        self.start("Deep  Work / Focus")
        self.assertFalse(self.sync.start("  deep work /   focus "))
        self.assertFalse(self.sync.start_timer("Deep Work", " Focus"))
        self.assertEqual(len(self.sync.state.active_timers), 1)

    def test_paused_timer_still_blocks_duplicate(self):
        timer_id = self.start("Work / Email")
        self.sync.pause(timer_id)
        self.assertFalse(self.sync.start("Work / Email"))

    def test_different_task_is_allowed(self):
        self.start("Work / Email")
        self.start("Work / Meetings")
        self.assertEqual(len(self.client.active), 2)

    def test_stopped_task_can_start_again(self):
        timer_id = self.start("Work / Email")
        self.clock.advance(seconds=10)
        self.sync.stop(timer_id)
        self.start("Work / Email")


# ──────────────────────────────────────────────────────────────────────────
# rollback
# ──────────────────────────────────────────────────────────────────────────

class TestRollback(SyncTestCase):

    def test_failed_start_leaves_no_timer(self):
        self.client.fail.add("replace_active_state")
        result = self.sync.start("Work / Email")
        self.assertFalse(result)
        self.assertEqual(self.sync.state.active_timers, {})
        self.assertEqual(self.notifications[-1], ("Failed to start timer: disk full", "error"))

    def test_failed_pause_restores_exact_timer(self):
        timer_id = self.start()
        self.clock.advance(minutes=3)
        before_map = self.sync.state.active_timers
        before = self.sync.timer(timer_id)

        self.client.fail.add("replace_active_state")
        result = self.sync.pause(timer_id)

        self.assertFalse(result)
        self.assertIs(self.sync.state.active_timers, before_map)
        self.assertIs(self.sync.timer(timer_id), before)
        self.assertFalse(before.is_paused)
        self.assertEqual(self.sync.elapsed_ms(timer_id), 180000)

    def test_failed_notes_edit_restores_notes(self):
        timer_id = self.start()
        self.client.fail.add("replace_active_state")
        self.assertFalse(self.sync.update_notes(timer_id, "new"))
        self.assertEqual(self.sync.timer(timer_id).notes, "")

    def test_rollback_triggers_rerender(self):
        timer_id = self.start()
        renders = len(self.renders)
        self.client.fail.add("replace_active_state")
        self.sync.delete(timer_id)
        self.assertGreater(len(self.renders), renders)
        self.assertIsNotNone(self.sync.timer(timer_id))

    def test_stop_with_failed_active_write_changes_nothing(self):
        timer_id = self.start()
        self.clock.advance(minutes=1)
        before = self.sync.timer(timer_id)
        self.client.fail.add("replace_active_state")

        result = self.sync.stop(timer_id)

        self.assertFalse(result)
        self.assertIs(self.sync.timer(timer_id), before)
        self.assertEqual(self.sync.state.historical_entries, [])
        self.assertNotIn("entries", [call[0] for call in self.client.calls])

    def test_stop_with_failed_history_write_rolls_back_both(self):
        """History failing after the active write went through puts the timer back on disk too."""
        timer_id = self.start()
        self.clock.advance(minutes=1)
        before = self.sync.timer(timer_id)
        self.client.calls.clear()
        self.client.fail.add("replace_entries")

        result = self.sync.stop(timer_id)

        self.assertFalse(result)
        self.assertIs(self.sync.timer(timer_id), before)
        self.assertEqual(self.sync.state.historical_entries, [])
        self.assertEqual([call[0] for call in self.client.calls], ["active", "entries", "active"])
        self.assertNotIn(timer_id, self.client.calls[0][1])
        self.assertIn(timer_id, self.client.active)
        self.assertEqual(self.client.entries, [])
        self.assertEqual(self.notifications[-1][1], "error")

    def test_stop_with_failed_compensation_warns_user(self):
        timer_id = self.start()
        self.clock.advance(minutes=1)
        client = self.client

        original = client.replace_entries

        def replace_entries_then_break(entries):
            client.fail.add("replace_active_state")
            original(entries)

        client.replace_entries = replace_entries_then_break
        client.fail.add("replace_entries")

        result = self.sync.stop(timer_id)

        self.assertFalse(result)
        self.assertIn("reload before continuing", result.error)
        self.assertIsNotNone(self.sync.timer(timer_id))


# ──────────────────────────────────────────────────────────────────────────
# serialization of mutations
# ──────────────────────────────────────────────────────────────────────────

class TestBusy(SyncTestCase):

    def test_second_mutation_refused_while_write_outstanding(self):
        timer_id = self.start()
        refused = []
        original = self.client.replace_active_state

        def slow_write(timers):
            refused.append(self.sync.start("Other / Thing"))
            original(timers)

        self.client.replace_active_state = slow_write
        self.assertTrue(self.sync.pause(timer_id))

        self.assertEqual(len(refused), 1)
        self.assertFalse(refused[0])
        self.assertEqual(refused[0].error, BUSY_MESSAGE)
        self.assertEqual(len(self.sync.state.active_timers), 1)
        self.assertFalse(self.sync.busy)

    def test_busy_signal_brackets_each_mutation(self):
        states = []
        self.sync.busy_changed.connect(states.append)
        self.start()
        self.assertEqual(states, [True, False])


# ──────────────────────────────────────────────────────────────────────────
# load / suggestions
# ──────────────────────────────────────────────────────────────────────────

ENTRY = {
    "project": "Client X",
    "task": "Proposal",
    "totalDurationMs": 60000,
    "durationSeconds": 60,
    "endTime": "2026-10-15T17:00:00+00:00",
    "notes": "",
}


class TestLoad(SyncTestCase):

    def test_load_restores_everything(self):
        self.client.entries = [ENTRY]
        self.client.suggestions = ["Learning / Reading"]
        self.client.active = {"t1": {
            "project": "Work", "task": "Email", "startTime": None,
            "accumulatedMs": 5000, "isPaused": True, "notes": "",
        }}
        self.sync.load()
        self.assertEqual(len(self.sync.state.historical_entries), 1)
        self.assertEqual(self.sync.timer("t1").accumulated_ms, 5000)
        self.assertEqual(self.sync.state.suggestions, ["Learning / Reading"])
        self.assertEqual(self.notifications, [])

    def test_entries_failure_is_fatal(self):
        self.client.fail.add("fetch_entries")
        with self.assertRaises(TransportError):
            self.sync.load()

    def test_active_state_failure_starts_fresh(self):
        self.client.fail.add("fetch_active_state")
        self.sync.load()
        self.assertEqual(self.sync.state.active_timers, {})
        self.assertEqual(self.notifications, [("Could not restore previous session. Starting fresh.", "info")])

    def test_invalid_active_state_starts_fresh(self):
        self.client.active = {"t1": {"project": "Work", "task": "Email", "isPaused": "yes"}}
        self.sync.load()
        self.assertEqual(self.sync.state.active_timers, {})

    def test_naive_start_time_starts_fresh(self):
        """A timer without a UTC offset is refused at load instead of breaking every redraw."""
        self.client.active = {"t1": {
            "project": "Work", "task": "Email", "startTime": "2026-10-16T09:00:00",
            "accumulatedMs": 0, "isPaused": False, "notes": "",
        }}
        self.sync.load()
        self.assertEqual(self.sync.state.active_timers, {})
        self.assertEqual(self.sync.elapsed_ms("t1"), 0)

    def test_suggestions_failure_is_ignored(self):
        self.client.fail.add("fetch_suggestions")
        self.sync.load()
        self.assertEqual(self.sync.state.suggestions, [])
        self.assertEqual(self.notifications, [])

    def test_suggestion_options_merge_history(self):
        self.client.suggestions = ["Client X / Proposal", "Learning / Reading"]
        self.client.entries = [ENTRY, dict(ENTRY, project="Work", task="Email")]
        self.sync.load()
        self.assertEqual(
            self.sync.suggestion_options(),
            ["Client X / Proposal", "Learning / Reading", "Work / Email"],
        )


if __name__ == "__main__":
    unittest.main()
