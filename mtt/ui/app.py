import sys
from pathlib import Path
from PySide6.QtCore import Qt, QEvent, QTimer
from PySide6.QtWidgets import (
    QApplication,
    QCompleter,
    QFileDialog,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QScrollArea,
    QVBoxLayout,
    QWidget,
)
from mtt.common.errors import MtttError
from mtt.common.logger import log
from mtt.core.export import default_export_name, export_csv
from mtt.core.reports import summarize
from mtt.ui.refresh import DisplayRefresher
from mtt.ui.widgets import (
    build_project_header,
    build_timer_row,
    set_header_expanded,
    set_row_enabled,
    update_elapsed,
)


# ---------------------------------------------------------------------------
# Main window
# ---------------------------------------------------------------------------

# Main window of the tracker. Shows active timers grouped by project and forwards every button press to the
# session synchronizer; it only ever re-renders from synchronizer state.
class MainWindow(QMainWindow):

    def __init__(self, sync, settings, export_dir=None):
        super().__init__()
        self.setWindowTitle("Multi-Task Time Tracker")
        self.resize(640, 520)

        self.sync = sync
        self.settings = settings
        self._export_dir = Path(export_dir) if export_dir else Path.home()
        self._rows = {}               # timer id -> widget dict
        self._headers = {}            # project -> header widget dict
        self._expanded = set()        # projects whose rows are shown
        self._group_rows = {}         # project -> [row frames]

        # -- Build UI skeleton --
        central = QWidget()
        self.setCentralWidget(central)
        self._main_lay = QVBoxLayout(central)

        input_row = QHBoxLayout()
        self._topic_input = QLineEdit()
        self._topic_input.setPlaceholderText("Project / Task")
        self._topic_input.returnPressed.connect(self._on_start)
        self._completer = QCompleter([], self)
        self._completer.setCaseSensitivity(Qt.CaseInsensitive)
        self._completer.setFilterMode(Qt.MatchContains)
        self._topic_input.setCompleter(self._completer)
        self._start_button = QPushButton("Start")
        self._start_button.clicked.connect(self._on_start)
        self._export_button = QPushButton("Export CSV")
        self._export_button.clicked.connect(self._on_export)
        input_row.addWidget(self._topic_input, 1)
        input_row.addWidget(self._start_button)
        input_row.addWidget(self._export_button)
        self._main_lay.addLayout(input_row)

        self._error_label = QLabel("")
        self._error_label.setStyleSheet("color: #dc2626;")
        self._main_lay.addWidget(self._error_label)

        self._count_label = QLabel("")
        self._main_lay.addWidget(self._count_label)

        self._scroll = QScrollArea()
        self._scroll.setWidgetResizable(True)
        self._list_widget = QWidget()
        self._list = QVBoxLayout(self._list_widget)
        self._list.setAlignment(Qt.AlignTop)
        self._scroll.setWidget(self._list_widget)
        self._main_lay.addWidget(self._scroll, 1)

        self._summary_label = QLabel("")
        self._summary_label.setStyleSheet("color: #4b5563;")
        self._main_lay.addWidget(self._summary_label)

        self._error_timer = QTimer(self)
        self._error_timer.setSingleShot(True)
        self._error_timer.timeout.connect(lambda: self._error_label.setText(""))

        # -- Wiring --
        self._refresher = DisplayRefresher(sync.has_running_timers, settings.refresh_interval_ms, self)
        self._refresher.tick.connect(self._update_all_displays)
        sync.state_changed.connect(self._rebuild)
        sync.notify.connect(self._on_notify)
        sync.busy_changed.connect(self._set_controls_enabled)

        self._rebuild()

    # ------------------------------------------------------------------ #
    #  Rendering                                                           #
    # ------------------------------------------------------------------ #

    def _rebuild(self):
        """Tear down and recreate the project groups from synchronizer state."""
        self._rows.clear()
        self._headers.clear()
        self._group_rows.clear()
        while self._list.count():
            item = self._list.takeAt(0)
            w = item.widget()
            if w:
                w.hide()
                w.deleteLater()

        timers = self.sync.state.active_timers
        self._count_label.setText(f"Active timers: {len(timers)}")
        if not timers:
            empty = QLabel("No active timers. Start one above.")
            empty.setStyleSheet("color: #9ca3af;")
            self._list.addWidget(empty)

        groups = {}
        for timer_id, timer in timers.items():
            groups.setdefault(timer.project, []).append((timer_id, timer))

        handlers = {
            "toggle": self._on_toggle,
            "stop": self._on_stop,
            "delete": self._on_delete,
            "notes": self._on_notes,
        }
        now = self.sync.now()
        for project in sorted(groups, key=str.lower):
            members = groups[project]
            header, header_dict = build_project_header(project, len(members), lambda p=project: self._on_group_toggle(p))
            self._headers[project] = header_dict
            self._list.addWidget(header)
            frames = []
            for timer_id, timer in members:
                frame, widgets = build_timer_row(timer_id, timer, timer.elapsed_ms(now), handlers)
                self._rows[timer_id] = widgets
                self._list.addWidget(frame)
                frames.append(frame)
            self._group_rows[project] = frames
            self._apply_group_visibility(project)

        self._completer.model().setStringList(self.sync.suggestion_options())
        self._summary_label.setText(summarize(self.sync.state.historical_entries, now).describe())
        self._set_controls_enabled(self.sync.busy)
        self._refresher.ensure_running()

    def _apply_group_visibility(self, project):
        expanded = project in self._expanded
        for frame in self._group_rows.get(project, []):
            frame.setVisible(expanded)
        set_header_expanded(self._headers[project], expanded)

    def _update_all_displays(self):
        now = self.sync.now()
        for timer_id, widgets in self._rows.items():
            update_elapsed(widgets, self.sync.elapsed_ms(timer_id, now))

    def _set_controls_enabled(self, busy):
        enabled = not busy
        self._start_button.setEnabled(enabled)
        self._topic_input.setEnabled(enabled)
        for widgets in self._rows.values():
            set_row_enabled(widgets, enabled)

    # ------------------------------------------------------------------ #
    #  Actions                                                             #
    # ------------------------------------------------------------------ #

    def _on_start(self):
        self._error_label.setText("")
        result = self.sync.start(self._topic_input.text())
        if result:
            self._topic_input.clear()
            timer = self.sync.timer(result.timer_id)
            if timer is not None:
                self._expanded.add(timer.project)
                self._apply_group_visibility(timer.project)
        else:
            self._show_error(result.error)

    def _on_toggle(self, timer_id):
        self._report(self.sync.toggle(timer_id))

    def _on_stop(self, timer_id):
        self._report(self.sync.stop(timer_id))

    def _on_delete(self, timer_id):
        self._report(self.sync.delete(timer_id))

    def _on_notes(self, timer_id, text):
        self._report(self.sync.update_notes(timer_id, text))

    def _on_group_toggle(self, project):
        if project in self._expanded:
            self._expanded.discard(project)
        else:
            self._expanded.add(project)
        self._apply_group_visibility(project)

    def _on_export(self):
        entries = self.sync.state.historical_entries
        if not entries:
            QMessageBox.information(self, "Export", "No data to export.")
            return
        suggested = str(self._export_dir / default_export_name())
        path, _ = QFileDialog.getSaveFileName(self, "Export CSV", suggested, "CSV files (*.csv)")
        if not path:
            return
        try:
            export_csv(entries, path)
        except (OSError, MtttError) as e:
            log.error(f"CSV export to '{path}' failed: {e}")
            QMessageBox.warning(self, "Export Error", f"Failed to export data:\n{e}")
            return
        self.statusBar().showMessage(f"Exported {len(entries)} entries to {path}", self.settings.notification_ms)

    def _report(self, result):
        if not result:
            self._show_error(result.error)

    def _show_error(self, message):
        self._error_label.setText(message)
        self._error_timer.start(3000)

    def _on_notify(self, message, level):
        self.statusBar().showMessage(message, self.settings.notification_ms)
        if level == "error":
            box = QMessageBox(QMessageBox.Warning, "Save Error", message, QMessageBox.Ok, self)
            box.setModal(False)
            box.setAttribute(Qt.WA_DeleteOnClose)
            box.show()

    # ------------------------------------------------------------------ #
    #  Visibility / close                                                  #
    # ------------------------------------------------------------------ #

    def changeEvent(self, event):
        if event.type() == QEvent.WindowStateChange:
            self._refresher.set_visible(not self.isMinimized())
        super().changeEvent(event)

    def hideEvent(self, event):
        self._refresher.set_visible(False)
        super().hideEvent(event)

    def showEvent(self, event):
        self._refresher.set_visible(not self.isMinimized())
        super().showEvent(event)

    def closeEvent(self, event):
        self._refresher.stop()
        count = len(self.sync.state.active_timers)
        if count:
            log.info(f"Closing with {count} active timer(s); their state is saved on the server")
        event.accept()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

# Runs the desktop app against an already-constructed synchronizer. Startup failure to load history is fatal
# and shown to the user before exiting.
def main(sync, settings, export_dir=None):
    app = QApplication.instance() or QApplication(sys.argv)
    try:
        sync.load()
    except MtttError as e:
        log.error(f"Failed to initialize application: {e}")
        QMessageBox.critical(
            None, "Connection Error",
            "Could not load your time entries from the local server.\n"
            f"{e}\n\nPlease make sure the server is running and try again.")
        return 1
    window = MainWindow(sync, settings, export_dir)
    window.show()
    window.statusBar().showMessage("Application loaded successfully!", 2000)
    return app.exec()
