"""Error taxonomy shared by the subscriber, the normalizer and the entrypoint."""


class ChannelTailError(Exception):
    """Base class for all service errors."""


class ConfigError(ChannelTailError):
    """A required setting is missing, empty or malformed."""

    def __init__(self, key: str, reason: str = "missing") -> None:
        super().__init__(f"{reason} config {key}")
        self.key = key
        self.reason = reason


class BrokerConnectError(ChannelTailError):
    """The broker could not be reached or the channel could not be subscribed."""

    def __init__(self, channel: str, detail: str) -> None:
        super().__init__(f"cannot subscribe {channel!r}: {detail}")
        self.channel = channel
        self.detail = detail


class BrokerRuntimeError(ChannelTailError):
    """The live subscription failed after startup."""

    def __init__(self, channel: str, detail: str) -> None:
        super().__init__(f"subscription {channel!r} failed: {detail}")
        self.channel = channel
        self.detail = detail


class DecodeError(ChannelTailError):
    """An inbound payload is not valid UTF-8 JSON text."""
