"""Exception types shared by the chat server and client."""

from __future__ import annotations

from typing import Any

from fastapi import status

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."
PAYMENT_REQUIRED_MESSAGE = "Payment required. Please add credits to your workspace."


class ChatError(Exception):
    """Base class for failures surfaced to the user."""


class ValidationError(ChatError):
    """Raised when a submission is rejected before reaching the network."""


class AttachmentFetchError(ChatError):
    """Raised when a remote tabular attachment cannot be downloaded."""


class ConfigurationError(ChatError):
    """Raised when required server configuration is missing."""


class UpstreamHTTPError(ChatError):
    """Wrap a non-success status returned by the generative backend."""

    def __init__(self, status_code: int, detail: Any = None):
        super().__init__(str(detail) if detail is not None else str(status_code))
        self.status_code = status_code
        self.detail = detail

    @property
    def user_message(self) -> str:
        if self.status_code == status.HTTP_429_TOO_MANY_REQUESTS:
            return RATE_LIMIT_MESSAGE
        if self.status_code == status.HTTP_402_PAYMENT_REQUIRED:
            return PAYMENT_REQUIRED_MESSAGE
        return f"AI gateway error: {self.status_code}"

    @property
    def response_status(self) -> int:
        """Status code to relay to the chat client."""

        if self.status_code in (
            status.HTTP_429_TOO_MANY_REQUESTS,
            status.HTTP_402_PAYMENT_REQUIRED,
        ):
            return self.status_code
        return status.HTTP_500_INTERNAL_SERVER_ERROR


class TransportError(ChatError):
    """Raised when the connection drops or a read fails mid-round."""


class PersistenceError(ChatError):
    """Raised by the message store when a write fails."""


class RoundCancelledError(ChatError):
    """Recorded when a streaming round is aborted by the caller."""


class SessionBusyError(ChatError):
    """Raised when a round is started while another one is active."""


__all__ = [
    "AttachmentFetchError",
    "ChatError",
    "ConfigurationError",
    "PAYMENT_REQUIRED_MESSAGE",
    "PersistenceError",
    "RATE_LIMIT_MESSAGE",
    "RoundCancelledError",
    "SessionBusyError",
    "TransportError",
    "UpstreamHTTPError",
    "ValidationError",
]
