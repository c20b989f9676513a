"""Domain errors raised by the order services.

Validation and constraint errors subclass ``ValueError`` and not-found errors
subclass ``LookupError`` so callers that only know the builtin hierarchy keep
working. Authorization failures use the builtin ``PermissionError``.
"""


class OrderflowError(Exception):
    """Base class for every error raised by the order core."""


class ValidationError(OrderflowError, ValueError):
    """Bad input: missing items, topping mismatch, invalid promotion..."""


class ConstraintViolation(ValidationError):
    """Input is well formed but breaks a system constraint (distance, time)."""


class InvalidTransition(ValidationError):
    def __init__(self, current: str, target: str, message: str = ""):
        self.current = current
        self.target = target
        super().__init__(message or f"Cannot change status from {current} to {target}")


class NotFoundError(OrderflowError, LookupError):
    def __init__(self, kind: str, ident=None):
        self.kind = kind
        self.ident = ident
        msg = f"{kind} not found" if ident is None else f"{kind} {ident} not found"
        super().__init__(msg)
