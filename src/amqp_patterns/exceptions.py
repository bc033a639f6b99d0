"""
Custom exceptions for the amqp-patterns runtime.

This module contains all custom exception classes used throughout the package.
Connection level failures are not wrapped: ``amqpstorm.AMQPConnectionError``
and ``amqpstorm.AMQPChannelError`` propagate as raised by the client.
"""

from typing import Any, Optional


class AmqpPatternsError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(AmqpPatternsError):
    """Raised when a client is configured with invalid or conflicting settings,
    or when its configuration is changed after it started running."""


class ProtocolMisuseError(AmqpPatternsError):
    """Raised when a delivery is acknowledged or rejected more than once, or
    when ack/reject is attempted on a session running without acknowledgement."""

    def __init__(self, delivery_tag: Optional[int], message: str = None):
        self.delivery_tag = delivery_tag
        if message is None:
            message = f"Delivery {delivery_tag} has already been responded to"
        super().__init__(message)


class DeliveryError(AmqpPatternsError):
    """Raised out of ``run()`` when a message callback failed and nothing handled it.

    The original error is available as ``error`` and as ``__cause__``.
    """

    def __init__(self, delivery: Any, error: BaseException, message: str = None):
        self.delivery = delivery
        self.error = error
        if message is None:
            tag = getattr(delivery, "delivery_tag", None)
            message = f"Callback failed for delivery {tag}: {error!r}"
        super().__init__(message)


class CapabilityError(AmqpPatternsError):
    """Raised when signal handlers cannot be installed in this process."""

    def __init__(self, signal_name: str, message: str = None):
        self.signal_name = signal_name
        if message is None:
            message = f"Signal {signal_name} cannot be handled in this environment"
        super().__init__(message)
