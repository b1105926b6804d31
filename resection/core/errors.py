"""Exception classes for the resection core."""


class ResectionError(Exception):
    """Base exception for resection errors."""
    pass


class InputValidationError(ResectionError, ValueError):
    """Raised when a request is well-formed but cannot be solved as given."""
    pass


class DegenerateGeometryError(InputValidationError):
    """Raised when no non-degenerate minimal subset of correspondences exists."""
    pass


class SerializationError(ResectionError):
    """Raised when a request cannot be parsed or a response cannot be encoded."""
    pass
