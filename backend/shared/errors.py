"""Exception types shared by the scheduler, broker and consumer processes."""


class PipelineError(Exception):
    """Base class for notification pipeline errors."""


class ConfigurationError(PipelineError):
    """Raised at startup when an environment value is missing or invalid."""


class BrokerError(PipelineError):
    """Raised when the message broker cannot be reached or used."""


class DeliveryError(PipelineError):
    """Raised when a channel transport rejects or fails a send."""

    def __init__(self, message: str, *, channel: str | None = None):
        super().__init__(message)
        self.channel = channel


class ChannelNotSupportedError(DeliveryError):
    """Raised by channels that have no working transport yet."""
