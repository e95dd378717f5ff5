"""Transports the session synchronizer uses to reach the durable store.

Both clients speak the same five operations. ``HttpStoreClient`` is the real
one, talking to the local server; ``LocalStoreClient`` wraps a store in the same
process and still pushes everything through JSON bytes, so it behaves like the
wire path (size cap included).
"""

import http.client
import json
import socket
import urllib.error
import urllib.request
from typing import Protocol

from mtt.common.errors import PersistenceError, TransportError, ValidationError
from mtt.common.logger import log
from mtt.core.models import DocumentKind
from mtt.core.store import serialize

# Anything that stops a round-trip from completing. http.client errors (bad status line, truncated body) are
# raised by urllib as-is rather than wrapped in URLError.
_TRANSPORT_ERRORS = (urllib.error.URLError, http.client.HTTPException, socket.timeout, TimeoutError, ConnectionError)

_ENDPOINTS = {
    DocumentKind.ENTRIES: "/api/data",
    DocumentKind.ACTIVE_STATE: "/api/active-state",
    DocumentKind.SUGGESTIONS: "/api/suggestions",
}


class StoreClient(Protocol):
    def fetch_entries(self) -> list: ...
    def fetch_active_state(self) -> dict: ...
    def fetch_suggestions(self) -> list: ...
    def replace_entries(self, entries: list) -> None: ...
    def replace_active_state(self, timers: dict) -> None: ...


class HttpStoreClient:
    """urllib client for the local server. Every call is bounded by ``timeout`` seconds."""

    def __init__(self, base_url, timeout=5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _request(self, kind, method="GET", payload=None):
        url = self.base_url + _ENDPOINTS[kind]
        data = None
        headers = {"Accept": "application/json"}
        if payload is not None:
            data = serialize(payload)
            headers["Content-Type"] = "application/json"
        request = urllib.request.Request(url, data=data, method=method, headers=headers)

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as e:
            message = _error_message(e)
            log.warning(f"{method} {url} failed with {e.code}: {message}")
            if e.code in (400, 413):
                raise ValidationError(message) from e
            raise PersistenceError(message) from e
        except _TRANSPORT_ERRORS as e:
            log.warning(f"{method} {url} did not complete: {e}")
            raise TransportError(f"Could not reach the server at {self.base_url}: {e}") from e

        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise TransportError(f"Server sent an unreadable reply for {_ENDPOINTS[kind]}") from e

    def _fetch(self, kind, expected_type):
        content = self._request(kind)
        if not isinstance(content, expected_type):
            raise TransportError(f"Server sent a {type(content).__name__} for {_ENDPOINTS[kind]}")
        return content

    def fetch_entries(self):
        return self._fetch(DocumentKind.ENTRIES, list)

    def fetch_active_state(self):
        return self._fetch(DocumentKind.ACTIVE_STATE, dict)

    def fetch_suggestions(self):
        return self._fetch(DocumentKind.SUGGESTIONS, list)

    def replace_entries(self, entries):
        self._request(DocumentKind.ENTRIES, "POST", entries)

    def replace_active_state(self, timers):
        self._request(DocumentKind.ACTIVE_STATE, "POST", timers)

    def health(self):
        url = self.base_url + "/api/health"
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as response:
                return json.loads(response.read().decode("utf-8"))
        except _TRANSPORT_ERRORS + (ValueError,) as e:
            raise TransportError(f"Health check against {self.base_url} failed: {e}") from e


def _error_message(error):
    try:
        return json.loads(error.read().decode("utf-8"))["message"]
    except (ValueError, KeyError, TypeError, OSError, http.client.HTTPException):
        return f"Server responded with {error.code}"


class LocalStoreClient:
    """In-process client over a DurableStore."""

    def __init__(self, store):
        self.store = store

    def fetch_entries(self):
        return self.store.read_document(DocumentKind.ENTRIES)

    def fetch_active_state(self):
        return self.store.read_document(DocumentKind.ACTIVE_STATE)

    def fetch_suggestions(self):
        return self.store.read_document(DocumentKind.SUGGESTIONS)

    def replace_entries(self, entries):
        self.store.write_payload(DocumentKind.ENTRIES, serialize(entries))

    def replace_active_state(self, timers):
        self.store.write_payload(DocumentKind.ACTIVE_STATE, serialize(timers))
