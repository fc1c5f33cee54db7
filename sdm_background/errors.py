"""
Exceptions and warnings raised while generating background points.
"""


class InvalidParameterError(ValueError):
    """The sampling request is structurally invalid."""


class AlignmentError(ValueError):
    """A bias surface or covariate grid does not line up with the study extent."""


class PartialSampleWarning(UserWarning):
    """Fewer background points could be drawn than were requested."""

    def __init__(self, requested: int, returned: int, reason: str = ""):
        self.requested = requested
        self.returned = returned
        self.shortfall = requested - returned
        message = f"Returned {returned} of {requested} requested background points (shortfall of {self.shortfall})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
