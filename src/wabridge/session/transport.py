"""Session transport collaborator: protocol, typed events and factory loading.

The transport owns pairing, encryption and wire framing. The bridge only
sees it through SessionTransport and the events it publishes.
"""

import importlib
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Protocol, Union


class TransportUnavailableError(RuntimeError):
    """Raised when no transport factory is configured or it cannot be created."""

    pass


@dataclass(frozen=True)
class LastDisconnect:
    """Why the transport closed. status_code follows DisconnectReason."""

    status_code: int | None = None
    message: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {"statusCode": self.status_code, "error": self.message}


@dataclass(frozen=True)
class ConnectionUpdate:
    connection: Literal["connecting", "open", "close"] | None = None
    qr: str | None = None
    last_disconnect: LastDisconnect | None = None


@dataclass(frozen=True)
class MessagesUpsert:
    messages: list[dict[str, Any]] = field(default_factory=list)
    type: str = "notify"


@dataclass(frozen=True)
class GroupsUpsert:
    groups: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class CredsUpdate:
    creds: dict[str, Any] = field(default_factory=dict)


TransportEvent = Union[ConnectionUpdate, MessagesUpsert, GroupsUpsert, CredsUpdate]

EventPublisher = Callable[[TransportEvent], None]


class SessionTransport(Protocol):
    """One live connection handle."""

    def send_message(self, jid: str, content: dict[str, Any]) -> dict[str, Any]:
        """Send content to jid. Returns a receipt with key.id and messageTimestamp."""
        ...

    def fetch_messages(self, jid: str, limit: int) -> list[dict[str, Any]]:
        """Return up to `limit` recent messages of a chat."""
        ...

    def logout(self) -> None:
        """Unlink the device and close the connection."""
        ...

    def close(self) -> None:
        """Close the connection, keeping the pairing."""
        ...


TransportFactory = Callable[[EventPublisher], SessionTransport]


def load_transport_factory(path: str) -> TransportFactory:
    """Resolve a "package.module:callable" path to a transport factory.

    Raises:
        TransportUnavailableError: If the path is malformed or cannot be imported.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise TransportUnavailableError(
            f"Invalid BRIDGE_TRANSPORT {path!r}: expected 'module:callable'"
        )
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise TransportUnavailableError(f"Cannot load transport factory {path!r}: {e}") from e
    if not callable(factory):
        raise TransportUnavailableError(f"Transport factory {path!r} is not callable")
    return factory
