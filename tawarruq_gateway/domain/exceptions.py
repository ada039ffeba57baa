"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class VenueError(DomainException):
    """Commodity venue returned an error or an unusable response"""

    pass


class VenueTimeoutError(VenueError):
    """Venue did not answer in time (transient)"""

    pass


class VenueRejectionError(VenueError):
    """Venue refused the order, e.g. insufficient liquidity (fatal)"""

    pass


class InvalidTransitionError(DomainException):
    """Requested status change is not permitted from the current status"""

    pass
