class StorageError(Exception):
    """Base class for database failures."""


class StorageUnavailable(StorageError):
    """The database cannot be opened or reached."""


class StorageWriteError(StorageError):
    """A single statement failed; nothing was committed."""


class TransportDeliveryError(Exception):
    """Telegram refused or failed to deliver an outbound message."""

    def __init__(self, chat_id: int, cause: Exception):
        super().__init__(f"delivery to chat {chat_id} failed: {cause}")
        self.chat_id = chat_id
        self.cause = cause
