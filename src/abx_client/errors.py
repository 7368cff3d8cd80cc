"""
Exception hierarchy for the ABX exchange client.

Fatal errors (configuration, connection, transport) propagate out of
SessionController.run(). MalformedPacket is raised by the wire codec and
handled inside the session: it ends the replay drain, or marks a single
recovery request as failed.
"""


class ABXClientError(Exception):
    """Base class for all client errors"""


class ConfigurationError(ABXClientError):
    """Configuration file missing, unparseable, or invalid"""


class ExchangeConnectionError(ABXClientError, ConnectionError):
    """Transport to the exchange could not be established"""

    def __init__(self, host: str, port: int, reason: str = ""):
        self.host = host
        self.port = port
        self.reason = reason
        message = f"Cannot connect to {host}:{port}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TransportError(ABXClientError):
    """Read or write failure on an established connection"""


class MalformedPacket(ABXClientError, ValueError):
    """Fewer bytes than a full packet record were available"""

    def __init__(self, received: int, expected: int = 16):
        self.received = received
        self.expected = expected
        super().__init__(f"Malformed packet: got {received} bytes, expected {expected}")
