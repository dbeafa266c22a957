"""Service-level error taxonomy shared by chat, store and attachment services."""


class ChatError(RuntimeError):
    """Base class for failures raised by chat services."""


class ChatValidationError(ChatError):
    """Raised when a request is missing fields or references an invalid target."""


class AttachmentRejectedError(ChatValidationError):
    """Raised when an upload exceeds the size ceiling or has a disallowed type."""


class NotFoundError(ChatError):
    """Raised when a referenced conversation or message does not exist."""


class TurnInProgressError(ChatError):
    """Raised when a conversation already has a turn sending or streaming."""


class TransportError(ChatError):
    """Raised when the model provider or the network fails during a turn."""


class DecodeError(ChatError):
    """Raised for one malformed stream record; the decoder skips it."""
