"""Errors raised by the fee lifecycle and notification layers."""


class FeeError(Exception):
    """Base class for mailroom fee engine errors."""


class ValidationError(FeeError, ValueError):
    """Bad caller input: short waive reason, unknown payment method, etc."""


class AlreadyProcessedError(FeeError, LookupError):
    """A conditional fee update matched no pending row.

    Raised both when the fee does not exist and when it was already paid or
    waived; callers that need to tell the two apart must look the fee up.
    """

    def __init__(self, fee_id: str, message: str = "Fee not found or already processed"):
        super().__init__(message)
        self.fee_id = fee_id
