"""Relay-Engine exception hierarchy."""


class RelayError(Exception):
    """Base exception for all Relay errors."""

    def __init__(self, message: str = "", code: str = "RELAY_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class EndpointNotFoundError(RelayError):
    """Raised when a webhook endpoint cannot be found in the registry."""

    def __init__(self, message: str = "Webhook endpoint not found"):
        super().__init__(message, code="ENDPOINT_NOT_FOUND")


class EventNotFoundError(RelayError):
    """Raised when an outbound event cannot be found."""

    def __init__(self, message: str = "Event not found"):
        super().__init__(message, code="EVENT_NOT_FOUND")


class DeliveryNotFoundError(RelayError):
    """Raised when a delivery record cannot be found."""

    def __init__(self, message: str = "Delivery not found"):
        super().__init__(message, code="DELIVERY_NOT_FOUND")


class DeliveryStateError(RelayError):
    """Raised when a manual operation is not allowed in the delivery's current state."""

    def __init__(self, message: str = "Delivery is not in a state that allows this operation"):
        super().__init__(message, code="INVALID_STATE")


class InvalidCursorError(RelayError):
    """Raised when a pagination cursor cannot be decoded."""

    def __init__(self, message: str = "Invalid pagination cursor"):
        super().__init__(message, code="INVALID_CURSOR")
