"""Error types raised by the relay core"""


class RelayError(Exception):
    """Base class for relay errors"""


class ValidationError(RelayError, ValueError):
    """Bad tier configuration or malformed adjustment input"""


class NoMatchingTierError(RelayError):
    """No tier covers the requested quantity"""

    def __init__(self, quantity: int):
        super().__init__(f"No tier matches quantity {quantity}")
        self.quantity = quantity


class ExternalWriteError(RelayError):
    """A price write or order submission was rejected or timed out"""


class DuplicateClassificationError(RelayError):
    """The order has already been classified for this shop"""


class TrackingRefreshError(RelayError):
    """The carrier source could not produce a tracking status"""


class InvalidTransitionError(RelayError):
    """An order job cannot move from its current status to the requested one"""

    def __init__(self, current: str, target: str):
        current = getattr(current, 'value', current)
        target = getattr(target, 'value', target)
        super().__init__(f"Cannot move order job from {current} to {target}")
        self.current = current
        self.target = target


class NotFoundError(RelayError):
    """Requested record does not exist for the shop"""
