"""Connection records for external storage providers.

The OAuth or network handshake happens elsewhere; this module only records
the state transitions it reports back.
"""

import logging
from collections.abc import Iterable
from typing import Any

from clipdeck.errors import InvalidState, NotFound, ValidationError
from clipdeck.models import Connection, ConnectionStatus, ConnectionType
from clipdeck.utils import short_id

logger = logging.getLogger(__name__)

PENDING = "pending"

DEFAULT_CONNECTIONS: tuple[Connection, ...] = (
    Connection("c1", "Google Drive", ConnectionType.GOOGLE_DRIVE),
)


def connection_to_dict(connection: Connection, pending: bool = False) -> dict[str, Any]:
    return {
        "id": connection.id,
        "name": connection.name,
        "type": connection.type.value,
        "status": connection.status.value,
        "account_id": connection.account_id,
        "pending": pending,
    }


def connection_from_dict(data: dict[str, Any]) -> Connection:
    status = ConnectionStatus(data.get("status", ConnectionStatus.DISCONNECTED.value))
    return Connection(
        id=data["id"],
        name=data["name"],
        type=ConnectionType(data["type"]),
        status=status,
        account_id=data.get("account_id") if status == ConnectionStatus.CONNECTED else None,
    )


class ConnectionManager:
    def __init__(self, connections: Iterable[Connection] = DEFAULT_CONNECTIONS):
        self._connections: dict[str, Connection] = {}
        self._pending: set[str] = set()
        for connection in connections:
            self._connections[connection.id] = Connection(
                connection.id, connection.name, connection.type, connection.status, connection.account_id
            )

    def add(self, name: str, type: ConnectionType | str) -> Connection:
        name = name.strip()
        if not name:
            raise ValidationError("connection name is required")
        connection = Connection(short_id(), name, ConnectionType(type))
        self._connections[connection.id] = connection
        logger.info("Added connection %s (%s)", connection.id, connection.type.value)
        return connection

    def get(self, connection_id: str) -> Connection:
        try:
            return self._connections[connection_id]
        except KeyError:
            raise NotFound("connection", connection_id) from None

    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    def is_pending(self, connection_id: str) -> bool:
        self.get(connection_id)
        return connection_id in self._pending

    def connect(self, connection_id: str) -> str:
        """Record that the auth collaborator started a connect attempt."""
        self.get(connection_id)
        self._pending.add(connection_id)
        return PENDING

    def on_connected(self, connection_id: str, account_id: str) -> Connection:
        connection = self.get(connection_id)
        if connection_id not in self._pending:
            raise InvalidState(f"connection {connection_id} has no connect attempt in progress")
        if not account_id.strip():
            raise ValidationError("account id is required")
        self._pending.discard(connection_id)
        connection.status = ConnectionStatus.CONNECTED
        connection.account_id = account_id.strip()
        logger.info("Connection %s connected as %s", connection_id, connection.account_id)
        return connection

    def on_error(self, connection_id: str) -> Connection:
        connection = self.get(connection_id)
        self._pending.discard(connection_id)
        connection.status = ConnectionStatus.ERROR
        connection.account_id = None
        logger.warning("Connection %s reported an error", connection_id)
        return connection

    def disconnect(self, connection_id: str) -> Connection:
        connection = self.get(connection_id)
        self._pending.discard(connection_id)
        connection.status = ConnectionStatus.DISCONNECTED
        connection.account_id = None
        return connection

    def remove(self, connection_id: str) -> None:
        self.get(connection_id)
        self._pending.discard(connection_id)
        del self._connections[connection_id]

    def dump(self) -> list[dict[str, Any]]:
        return [connection_to_dict(c, c.id in self._pending) for c in self._connections.values()]

    def load(self, data: Iterable[dict[str, Any]]) -> None:
        data = list(data)
        loaded = {c.id: c for c in (connection_from_dict(d) for d in data)}
        self._pending = {d["id"] for d in data if d.get("pending")}
        self._connections = loaded
