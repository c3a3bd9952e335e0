"""Building the answer to an MCP initialize request."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any


class InitializationError(Exception):
    """Session initialization failed; ``status`` is the HTTP status to answer with."""

    def __init__(self, message: str, status: int = HTTPStatus.INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.status = int(status)


@dataclass(frozen=True)
class BootstrapSession:
    """Stand-in session used before a real session exists; it only knows the user.

    Client capabilities are unknown at that point, so they default to absent.
    """

    user_id: str
    session_id: str = ""
    protocol_version: str = ""
    sampling_capability: Any = None
    roots_capability: Any = None
    elicitation_capability: Any = None

    def get_sampling_capability(self) -> Any:
        """The client's sampling capability, absent during bootstrap."""
        return self.sampling_capability

    def get_roots_capability(self) -> Any:
        """The client's roots capability, absent during bootstrap."""
        return self.roots_capability

    def get_elicitation_capability(self) -> Any:
        """The client's elicitation capability, absent during bootstrap."""
        return self.elicitation_capability


def _to_json(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


def client_capability_flags(capabilities: Any) -> dict[str, bool]:
    """Return which optional client capabilities an initialize request declares.

    Raises ValueError when the capabilities object is malformed.
    """
    if capabilities is None:
        capabilities = {}
    if not isinstance(capabilities, dict):
        raise ValueError("capabilities must be an object")
    roots = capabilities.get("roots")
    roots_list_changed = False
    if roots is not None:
        if not isinstance(roots, dict):
            raise ValueError("roots capability must be an object")
        roots_list_changed = roots.get("listChanged", False)
        if not isinstance(roots_list_changed, bool):
            raise ValueError("roots.listChanged must be a boolean")
    return {
        "sampling": capabilities.get("sampling") is not None,
        "roots": roots is not None,
        "roots_list_changed": roots_list_changed,
        "elicitation": capabilities.get("elicitation") is not None,
    }


async def negotiate_protocol_version(server: Any, user_id: str, requested: str) -> str:
    """Return the server's preferred protocol version, or the client's when it has none."""
    getter = getattr(server, "get_preferred_protocol_version", None)
    if getter is None:
        return requested
    try:
        preferred = await getter(BootstrapSession(user_id=user_id))
    except Exception as exc:
        raise InitializationError(f"failed to get preferred protocol version: {exc}") from exc
    return preferred if preferred else requested


async def _lookup(owner: Any, name: str, session: Any, what: str) -> Any:
    getter = getattr(owner, name, None)
    if getter is None:
        return None
    try:
        return await getter(session)
    except Exception as exc:
        raise InitializationError(f"failed to get {what}: {exc}") from exc


async def build_initialize_result(server: Any, session: Any, protocol_version: str) -> dict[str, Any]:
    """Describe the server and the capabilities it offers to ``session``."""
    info = await _lookup(server, "get_server_info", session, "server info")
    if info is None:
        raise InitializationError("failed to get server info: not provided")

    result: dict[str, Any] = {
        "protocolVersion": protocol_version,
        "capabilities": {},
        "serverInfo": _to_json(info),
    }
    capabilities: dict[str, Any] = result["capabilities"]

    instructions = await _lookup(server, "get_instructions", session, "instructions")
    if instructions:
        result["instructions"] = instructions

    resources = await _lookup(server, "get_resources_capability", session, "resources capability")
    if resources is not None:
        subscription = await _lookup(
            resources,
            "get_subscription_capability",
            session,
            "resources subscription capability",
        )
        list_changed = await _lookup(
            resources,
            "get_list_changed_capability",
            session,
            "resources listChanged capability",
        )
        capabilities["resources"] = {
            "listChanged": list_changed is not None,
            "subscribe": subscription is not None,
        }

    for kind in ("tools", "prompts"):
        capability = await _lookup(server, f"get_{kind}_capability", session, f"{kind} capability")
        if capability is not None:
            list_changed = await _lookup(
                capability,
                "get_list_changed_capability",
                session,
                f"{kind} listChanged capability",
            )
            capabilities[kind] = {"listChanged": list_changed is not None}

    for kind in ("logging", "completions"):
        capability = await _lookup(server, f"get_{kind}_capability", session, f"{kind} capability")
        if capability is not None:
            capabilities[kind] = {}

    return result