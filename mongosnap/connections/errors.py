"""Errors raised by the connection registry."""


class ConnectionFailedError(Exception):
    """The MongoDB server could not be reached or refused the credentials."""


class ConnectionNotFoundError(LookupError):
    """No live connection is registered for the (user, connection) pair."""

    def __init__(self, user_id: str, connection_id: str) -> None:
        self.user_id = user_id
        self.connection_id = connection_id
        super().__init__(f"No active connection {connection_id} for user {user_id}")
