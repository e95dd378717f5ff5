import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOGGER_NAME = "mttt"
DEBUG_RUNS_FOLDER = "debug"


# Attaches a handler under a fixed name unless the logger already carries one by that name.
def _attach(logger, handler_name, build, level, fmt):
    if any(h.get_name() == handler_name for h in logger.handlers):
        return False
    handler = build()
    handler.setLevel(level)
    handler.setFormatter(fmt)
    handler.set_name(handler_name)
    logger.addHandler(handler)
    return True

# Keeps only the newest `keep` per-run debug logs.
def _prune_debug_runs(runs_dir, name, keep):
    runs = sorted(runs_dir.glob(f"{name}_*.log"), key=lambda p: p.stat().st_mtime, reverse=True)
    for run in runs[keep:]:
        try:
            run.unlink()
        except OSError:
            logging.getLogger(name).debug(f"Could not remove old debug log {run}", exc_info=True)

# Configures the shared application logger: a rotating history file, latest.log for this run only, one
# debug-level file per run (the newest `debug_runs` are kept) and optionally the console. Calling it again
# never doubles a handler.
def configure_logging(
        log_dir: Path,
        name = LOGGER_NAME,
        level = logging.INFO,
        max_bytes = 5 * 1024 * 1024,
        backup_count = 5,
        console = False,
        debug_runs: int = 10
) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.propagate = False
    logger.setLevel(logging.DEBUG if debug_runs > 0 else level)
    log_dir.mkdir(parents=True, exist_ok=True)
    fmt = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    _attach(logger, f"{name}:history",
            lambda: RotatingFileHandler(log_dir / f"{name}.log", maxBytes=max_bytes,
                                        backupCount=backup_count, encoding="utf-8"),
            level, fmt)
    _attach(logger, f"{name}:latest",
            lambda: logging.FileHandler(log_dir / "latest.log", mode="w", encoding="utf-8"),
            level, fmt)

    if debug_runs > 0:
        runs_dir = log_dir / DEBUG_RUNS_FOLDER
        runs_dir.mkdir(parents=True, exist_ok=True)
        run_file = runs_dir / f"{name}_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
        if _attach(logger, f"{name}:run", lambda: logging.FileHandler(run_file, encoding="utf-8"),
                   logging.DEBUG, fmt):
            _prune_debug_runs(runs_dir, name, debug_runs)

    if console:
        _attach(logger, f"{name}:console", logging.StreamHandler, level, fmt)

    return logger

# Modules log through this object. Until configure_logging() runs it has no handlers of its own, so library use
# and tests stay quiet instead of writing files.
log = logging.getLogger(LOGGER_NAME)
log.addHandler(logging.NullHandler())
