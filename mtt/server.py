"""Local HTTP front door for the durable store.

Binds to 127.0.0.1 only. Single user, no auth: the endpoints just map the
store's read/replace operations onto GET/POST, plus a health report.
"""

import json
import signal
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from mtt.common.errors import PersistenceError, ValidationError
from mtt.common.logger import log
from mtt.core.models import DocumentKind

_ROUTES = {
    "/api/data": DocumentKind.ENTRIES,
    "/api/active-state": DocumentKind.ACTIVE_STATE,
    "/api/suggestions": DocumentKind.SUGGESTIONS,
}

# Documents the API lets clients replace. Suggestions are edited by hand on disk.
_WRITABLE = {
    DocumentKind.ENTRIES: "Data saved successfully",
    DocumentKind.ACTIVE_STATE: "Active state saved",
}


class StoreRequestHandler(BaseHTTPRequestHandler):
    server_version = "MTTT/1.0"

    @property
    def store(self):
        return self.server.store

    def log_message(self, format, *args):
        log.debug(f"{self.address_string()} {format % args}")

    def _send_json(self, status, payload):
        body = json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _path(self):
        return self.path.split("?", 1)[0]

    def do_GET(self):
        path = self._path()
        try:
            if path == "/api/health":
                self._send_json(200, self.store.health())
                return
            kind = _ROUTES.get(path)
            if kind is None:
                self._send_json(404, {"message": "Endpoint not found"})
                return
            try:
                content = self.store.read_document(kind)
            except PersistenceError as e:
                log.error(f"Error reading {kind.label} file: {e}")
                self._send_json(500, {"message": f"Error reading {kind.label} file"})
                return
            self._send_json(200, content)
        except Exception:
            self._unexpected()

    def do_POST(self):
        path = self._path()
        try:
            kind = _ROUTES.get(path)
            if kind not in _WRITABLE:
                self._send_json(404, {"message": "Endpoint not found"})
                return

            try:
                length = int(self.headers.get("Content-Length", ""))
            except ValueError:
                self._send_json(411, {"message": "Content-Length required"})
                return
            if length > self.store.max_payload_bytes:
                log.warning(f"Rejected {length} byte payload for {path} before parsing it")
                self._discard_body(length)
                self.close_connection = True
                self._send_json(413, {"message": "Payload too large"})
                return

            body = self.rfile.read(length)
            try:
                ack = self.store.write_payload(kind, body)
            except ValidationError as e:
                log.warning(f"Rejected {kind.label} write: {e}")
                status = 413 if str(e) == "Payload too large" else 400
                self._send_json(status, {"message": str(e)})
                return
            except PersistenceError as e:
                log.error(f"Error saving {kind.label}: {e}")
                self._send_json(500, {"message": str(e)})
                return
            self._send_json(200, {"message": _WRITABLE[kind], "items": ack.items})
        except Exception:
            self._unexpected()

    # Reads and drops an oversized body in small chunks. Closing with unread data would reset the connection
    # before the client sees the 413.
    def _discard_body(self, length):
        remaining = length
        while remaining > 0:
            chunk = self.rfile.read(min(remaining, 65536))
            if not chunk:
                break
            remaining -= len(chunk)

    def _unexpected(self):
        log.exception(f"Unexpected error handling {self.command} {self.path}")
        try:
            self._send_json(500, {"message": "Internal server error"})
        except OSError:
            log.debug("Client went away before the error response was sent", exc_info=True)


class StoreServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, store):
        self.store = store
        super().__init__(address, StoreRequestHandler)

    @property
    def url(self):
        host, port = self.server_address[:2]
        return f"http://{host}:{port}"


# Builds a server around an initialized store. Port 0 picks a free port, which is what tests use.
def make_server(store, host="127.0.0.1", port=13331):
    server = StoreServer((host, port), store)
    log.info(f"MTTT server bound to {server.url}")
    return server

# Starts serving on a background thread and returns (server, thread). Used by the desktop app, which runs
# its own store in-process.
def start_background_server(store, host="127.0.0.1", port=13331):
    server = make_server(store, host, port)
    thread = threading.Thread(target=server.serve_forever, name="mttt-server", daemon=True)
    thread.start()
    return server, thread

# Foreground entry: initialize the store, serve until SIGINT/SIGTERM, shut down cleanly. Returns an exit code.
def run_server(store, host="127.0.0.1", port=13331):
    try:
        store.initialize()
    except PersistenceError:
        log.exception("CRITICAL: Failed to initialize files. Exiting.")
        return 1

    server = make_server(store, host, port)

    def _shutdown(signum, frame):
        log.info(f"Shutdown signal received ({signal.Signals(signum).name})")
        # shutdown() blocks until serve_forever returns, so it can't run on the serving thread
        threading.Thread(target=server.shutdown, daemon=True).start()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    print(f"MTTT Server is running. Open {server.url} or start the desktop app.")
    try:
        server.serve_forever()
    finally:
        server.server_close()
        log.info("Server shut down successfully")
    return 0
