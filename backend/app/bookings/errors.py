class ToolNotFoundError(LookupError):
    pass


class ToolInactiveError(ToolNotFoundError):
    pass


class BookingNotFoundError(LookupError):
    pass


class BookingConflictError(ValueError):
    pass


class BookingValidationError(ValueError):
    pass


class InvalidStatusTransitionError(ValueError):
    pass


class ToolOwnershipError(PermissionError):
    pass
