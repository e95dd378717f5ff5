"""Row widget builders for project headers and timer rows.

Each builder returns a (container, widget_dict) tuple. The widget_dict maps
logical names to sub-widgets so the window can update them on each tick
without rebuilding the row.
"""

from PySide6.QtCore import Qt
from PySide6.QtGui import QFont
from PySide6.QtWidgets import (
    QFrame,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QPushButton,
    QVBoxLayout,
)

from mtt.util.misc import format_time

PAUSED_STYLE = "QFrame#timerRow { background: #fff7ed; border: 1px solid #fdba74; border-radius: 6px; }"
RUNNING_STYLE = "QFrame#timerRow { background: #ffffff; border: 1px solid #e5e7eb; border-radius: 6px; }"


def build_project_header(project, count, on_toggle):
    """Clickable header for one project group. on_toggle() collapses/expands its rows."""
    button = QPushButton(f"▸ {project} ({count})")
    button.setObjectName("projectHeader")
    button.setFlat(True)
    font = button.font()
    font.setBold(True)
    button.setFont(font)
    button.setStyleSheet("text-align: left; padding: 6px; background: #e5e7eb; border-radius: 6px;")
    button.clicked.connect(lambda: on_toggle())
    return button, {"button": button, "project": project, "count": count}


def set_header_expanded(widget_dict, expanded):
    arrow = "▾" if expanded else "▸"
    widget_dict["button"].setText(f"{arrow} {widget_dict['project']} ({widget_dict['count']})")


def build_timer_row(timer_id, timer, elapsed_ms, handlers):
    """One card per active timer.

    handlers maps "toggle", "stop", "delete" to callables taking the timer id,
    and "notes" to a callable taking (timer id, text).
    """
    frame = QFrame()
    frame.setObjectName("timerRow")
    frame.setStyleSheet(PAUSED_STYLE if timer.is_paused else RUNNING_STYLE)
    outer = QVBoxLayout(frame)
    outer.setContentsMargins(10, 8, 10, 8)

    top = QHBoxLayout()
    labels = QVBoxLayout()
    task_label = QLabel()
    since_label = QLabel()
    since_label.setStyleSheet("color: #9ca3af; font-size: 11px;")
    labels.addWidget(task_label)
    labels.addWidget(since_label)
    top.addLayout(labels, 1)

    time_label = QLabel(format_time(elapsed_ms // 1000))
    time_font = QFont("Monospace")
    time_font.setStyleHint(QFont.TypeWriter)
    time_font.setPointSize(13)
    time_label.setFont(time_font)
    time_label.setAlignment(Qt.AlignRight | Qt.AlignVCenter)
    time_label.setMinimumWidth(96)
    top.addWidget(time_label)

    toggle_button = QPushButton()
    stop_button = QPushButton("Stop")
    delete_button = QPushButton("Delete")
    stop_button.setStyleSheet("background: #ef4444; color: white; padding: 3px 10px;")
    delete_button.setStyleSheet("background: #9ca3af; color: white; padding: 3px 10px;")
    toggle_button.clicked.connect(lambda: handlers["toggle"](timer_id))
    stop_button.clicked.connect(lambda: handlers["stop"](timer_id))
    delete_button.clicked.connect(lambda: handlers["delete"](timer_id))
    for button in (toggle_button, stop_button, delete_button):
        top.addWidget(button)
    outer.addLayout(top)

    notes_edit = QLineEdit(timer.notes)
    notes_edit.setPlaceholderText("Add notes or comments...")
    notes_edit.editingFinished.connect(lambda: handlers["notes"](timer_id, notes_edit.text()))
    outer.addWidget(notes_edit)

    widgets = {
        "frame": frame,
        "task": task_label,
        "since": since_label,
        "time": time_label,
        "toggle": toggle_button,
        "stop": stop_button,
        "delete": delete_button,
        "notes": notes_edit,
    }
    update_timer_row(widgets, timer, elapsed_ms)
    return frame, widgets


def update_timer_row(widgets, timer, elapsed_ms):
    """Refresh the labels of an existing row in place."""
    prefix = "(Paused) " if timer.is_paused else ""
    widgets["task"].setText(f"{prefix}{timer.task}")
    if timer.is_paused:
        widgets["since"].setText("Accumulated")
    else:
        widgets["since"].setText(f"Running since {timer.start_time.astimezone():%H:%M:%S}")
    widgets["time"].setText(format_time(elapsed_ms // 1000))
    widgets["toggle"].setText("Resume" if timer.is_paused else "Pause")
    colour = "#22c55e" if timer.is_paused else "#eab308"
    widgets["toggle"].setStyleSheet(f"background: {colour}; color: white; padding: 3px 10px;")


def update_elapsed(widgets, elapsed_ms):
    widgets["time"].setText(format_time(elapsed_ms // 1000))


def set_row_enabled(widgets, enabled):
    for name in ("toggle", "stop", "delete", "notes"):
        widgets[name].setEnabled(enabled)
