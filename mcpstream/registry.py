"""Per-session bookkeeping of in-flight requests and subscription forwarders."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from .jsonrpc import RequestId, request_id_key


class SessionRegistry:
    """Tracks process-local resources that belong to sessions.

    In-flight requests are kept with a cancel callable so that a
    notifications/cancelled from the client can stop them. Forwarders are
    long-lived handles (typically asyncio tasks) keyed by resource URI; a
    handle must offer ``cancel()`` and may offer ``add_done_callback``.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, dict[str, Callable[[], Any]]] = {}
        self._forwarders: dict[str, dict[str, Any]] = {}

    def begin_request(
        self, session_id: str, request_id: RequestId, cancel: Callable[[], Any]
    ) -> None:
        """Record a cancellable in-flight request."""
        self._inflight.setdefault(session_id, {})[request_id_key(request_id)] = cancel

    def finish_request(self, session_id: str, request_id: RequestId) -> None:
        """Forget an in-flight request once it has completed."""
        self._pop_request(session_id, request_id_key(request_id))

    def cancel_request(self, session_id: str, request_id: RequestId) -> bool:
        """Cancel an in-flight request; returns whether one was found."""
        cancel = self._pop_request(session_id, request_id_key(request_id))
        if cancel is None:
            return False
        cancel()
        return True

    def _pop_request(self, session_id: str, key: str) -> Callable[[], Any] | None:
        requests = self._inflight.get(session_id)
        if requests is None:
            return None
        cancel = requests.pop(key, None)
        if not requests:
            del self._inflight[session_id]
        return cancel

    def has_forwarder(self, session_id: str, uri: str) -> bool:
        """True when a forwarder is running for the session and URI."""
        return uri in self._forwarders.get(session_id, {})

    def add_forwarder(self, session_id: str, uri: str, factory: Callable[[], Any]) -> bool:
        """Start a forwarder unless one exists already; returns whether one was started."""
        if self.has_forwarder(session_id, uri):
            return False
        handle = factory()
        self._forwarders.setdefault(session_id, {})[uri] = handle
        add_done_callback = getattr(handle, "add_done_callback", None)
        if add_done_callback is not None:
            add_done_callback(lambda _done: self._drop_forwarder(session_id, uri, handle))
        return True

    def _drop_forwarder(self, session_id: str, uri: str, handle: Any) -> None:
        forwarders = self._forwarders.get(session_id)
        if forwarders is None or forwarders.get(uri) is not handle:
            return
        del forwarders[uri]
        if not forwarders:
            del self._forwarders[session_id]

    def remove_forwarder(self, session_id: str, uri: str) -> bool:
        """Cancel and forget the forwarder for a URI; returns whether one existed."""
        forwarders = self._forwarders.get(session_id)
        if forwarders is None or uri not in forwarders:
            return False
        handle = forwarders.pop(uri)
        if not forwarders:
            del self._forwarders[session_id]
        handle.cancel()
        return True

    def teardown(self, session_id: str) -> None:
        """Cancel every forwarder of a session and drop its bookkeeping."""
        for handle in self._forwarders.pop(session_id, {}).values():
            handle.cancel()