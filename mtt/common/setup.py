import os
import sys
from pathlib import Path
from dataclasses import dataclass

# Lil helper function to create missing directories if missing, and optionally error out when a path
# doesn't exist.
def ensure_directory(path: Path,must_exist=False):
    if must_exist:
        if not path.exists():
            raise FileNotFoundError(f"Required directory is missing: {path}")
        if not path.is_dir():
            raise NotADirectoryError(f"Expected a directory, got a file: {path}")
    else:
        path.mkdir(parents=True,exist_ok=True)
    return path

# Returns the per-user base folder the data directory lives under, following each platform's convention.
def user_data_root() -> Path:
    if sys.platform.startswith("win"):
        appdata = os.getenv("APPDATA")
        return Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    xdg = os.getenv("XDG_DATA_HOME")
    return Path(xdg) if xdg else Path.home() / ".local" / "share"

# Dataclass for accessing paths across program.
@dataclass(frozen=False)
class ProjectPaths:

    data: Path
    logs: Path
    snapshots: Path

    # Builds (and creates) the folder layout. An explicit data_dir wins, then MTT_DATA_DIR, then the legacy
    # DATA_DIR variable the old node server read, then the per-user default.
    @staticmethod
    def build(data_dir=None):
        if data_dir is None:
            data_dir = os.getenv("MTT_DATA_DIR") or os.getenv("DATA_DIR")
        if data_dir:
            data = ensure_directory(Path(data_dir).expanduser())
        else:
            data = ensure_directory(user_data_root() / "MTTT")

        logs = ensure_directory(data / "logs")
        snapshots = ensure_directory(data / "snapshots")

        return ProjectPaths(
            data = data,
            logs = logs,
            snapshots = snapshots
        )
