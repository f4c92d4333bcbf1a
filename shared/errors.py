"""
Error hierarchy for the layer relay.

All relay-specific errors inherit from RelayError so callers can catch them
in one place. The scope of each error decides how far it may travel:

- ConfigError: fatal at startup (bad settings, bad layer file, store unreachable)
- UnknownLayer: per request, surfaced to the client as a 400
- MalformedPayload: per notification, logged and dropped
- UpstreamDisconnected: per layer, triggers reconnect with backoff
- DeliveryFailure: per subscriber, triggers unregistration of that subscriber
- OriginRejected: per request, rejected before reaching subscription logic
"""


class RelayError(Exception):
    """Base error for all relay operations."""


class ConfigError(RelayError):
    """Invalid or missing configuration."""


class UnknownLayer(RelayError):
    """A client asked for a layer that is not in the registry."""

    def __init__(self, layer_name: str):
        self.layer_name = layer_name
        super().__init__(f"Unknown layer: {layer_name!r}")


class MalformedPayload(RelayError):
    """A notification or snapshot row could not be turned into a domain event."""

    def __init__(self, layer_name: str, reason: str):
        self.layer_name = layer_name
        self.reason = reason
        super().__init__(f"Malformed payload for layer {layer_name!r}: {reason}")


class UpstreamDisconnected(RelayError):
    """The listen connection for a layer was lost."""

    def __init__(self, layer_name: str, reason: str = "connection terminated"):
        self.layer_name = layer_name
        super().__init__(f"Upstream disconnected for layer {layer_name!r}: {reason}")


class DeliveryFailure(RelayError):
    """An event could not be handed to one subscriber."""


class OriginRejected(RelayError):
    """The request origin is not in the allow-list."""

    def __init__(self, origin: str):
        self.origin = origin
        super().__init__(f"Origin not allowed: {origin}")
