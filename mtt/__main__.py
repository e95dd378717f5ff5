import argparse
import sys
from pathlib import Path
from mtt import __version__
from mtt.common.errors import MtttError, TransportError
from mtt.common.logger import configure_logging, log
from mtt.common.setup import ProjectPaths
from mtt.core.config import load_settings
from mtt.core.models import DocumentKind, entries_to_json, validate_content
from mtt.core.store import DurableStore


def _build_parser():
    parser = argparse.ArgumentParser(prog="mttt", description="Multi-Task Time Tracker")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--data-dir", default=None, help="Folder holding the tracker documents")
    parser.add_argument("--console", action="store_true", help="Also log to the console")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("app", help="Run the desktop app (default)")

    serve = sub.add_parser("serve", help="Run only the local storage server")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    export = sub.add_parser("export", help="Export history to CSV")
    export.add_argument("output", nargs="?", default=None, help="Target CSV path")

    demo = sub.add_parser("demo-data", help="Fill history with generated entries")
    demo.add_argument("--days", type=int, default=84)
    demo.add_argument("--seed", type=int, default=None)
    demo.add_argument("--force", action="store_true", help="Overwrite existing history")
    return parser


def _build_store(paths, settings):
    return DurableStore(
        paths.data,
        max_payload_bytes=settings.max_payload_bytes,
        lock_timeout=settings.lock_timeout,
        snapshot_dir=paths.snapshots,
        snapshot_min_minutes=settings.snapshot_min_minutes,
    )

#region Commands

def _cmd_serve(args, paths, settings):
    from mtt.server import run_server
    host = args.host or settings.host
    port = args.port if args.port is not None else settings.port
    return run_server(_build_store(paths, settings), host, port)

# Uses an already running server when there is one, otherwise serves the store from a background thread of
# this process.
def _cmd_app(args, paths, settings):
    from mtt.client import HttpStoreClient
    from mtt.core.sync import SessionSynchronizer
    from mtt.server import start_background_server
    from mtt.ui.app import main

    client = HttpStoreClient(settings.base_url, settings.request_timeout)
    server = None
    try:
        client.health()
        log.info(f"Using the server already running at {settings.base_url}")
    except TransportError:
        store = _build_store(paths, settings)
        store.initialize()
        server, _ = start_background_server(store, settings.host, settings.port)
        client = HttpStoreClient(server.url, settings.request_timeout)

    try:
        return main(SessionSynchronizer(client), settings, export_dir=Path.home())
    finally:
        if server is not None:
            server.shutdown()
            server.server_close()

def _cmd_export(args, paths, settings):
    from mtt.core.export import default_export_name, export_csv
    store = _build_store(paths, settings)
    entries = validate_content(DocumentKind.ENTRIES, store.read_document(DocumentKind.ENTRIES))
    output = Path(args.output) if args.output else Path.cwd() / default_export_name()
    export_csv(entries, output)
    print(f"Exported {len(entries)} entries to {output}")
    return 0

def _cmd_demo_data(args, paths, settings):
    import random
    from mtt.core.demo import generate_demo_entries
    from mtt.util.misc import now_local
    store = _build_store(paths, settings)
    store.initialize()
    existing = store.read_document(DocumentKind.ENTRIES)
    if existing and not args.force:
        print(f"History already holds {len(existing)} entries, pass --force to replace it.", file=sys.stderr)
        return 1
    entries = generate_demo_entries(now_local(), days_back=args.days, rng=random.Random(args.seed))
    store.write_document(DocumentKind.ENTRIES, entries_to_json(entries))
    print(f"Wrote {len(entries)} demo entries to {store.path(DocumentKind.ENTRIES)}")
    return 0

_COMMANDS = {
    "app": _cmd_app,
    "serve": _cmd_serve,
    "export": _cmd_export,
    "demo-data": _cmd_demo_data,
}

#endregion


def main(argv=None):
    args = _build_parser().parse_args(argv)
    command = args.command or "app"
    paths = ProjectPaths.build(args.data_dir)
    configure_logging(paths.logs, console=args.console or command == "serve")
    settings = load_settings(paths.data)
    log.info(f"Starting '{command}' with data folder '{paths.data}'")
    try:
        return _COMMANDS[command](args, paths, settings)
    except MtttError as e:
        log.error(f"'{command}' failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

# Entry point for `python -m mtt`
def run() -> None:
    try:
        sys.exit(main())
    except SystemExit:
        raise
    except Exception:
        # Full stack trace, always
        log.exception("Uncaught exception in entrypoint, exiting")
        sys.exit(1)

if __name__ == "__main__":
    run()
