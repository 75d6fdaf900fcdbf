"""Domain errors raised by the billing engine and delivery queue.

Routers translate these into HTTP responses; batch operations collect them
per group or per item instead of letting them escape.
"""


class BillingError(Exception):
    """Base class for expected, classified failures."""


class ValidationError(BillingError):
    """Malformed input rejected before any store mutation."""


class MissingRateError(BillingError):
    """No usable rate per unit could be resolved for a payer."""


class DuplicateInvoiceError(BillingError):
    """An invoice already covers the client/week being generated."""

    def __init__(self, message: str, invoice_number: str | None = None):
        super().__init__(message)
        self.invoice_number = invoice_number


class ConcurrencyConflict(BillingError):
    """A concurrent writer won a race; the caller may retry."""


class RenderError(BillingError):
    """A document could not be produced for a queue item."""


class DeliveryError(BillingError):
    """The outbound message for a batch was not delivered."""


class QueueItemNotFound(BillingError):
    pass


class InvalidQueueTransition(BillingError):
    pass


class OverlapConflictError(ValidationError):
    """Timesheet entries collide with existing or sibling entries."""

    def __init__(self, conflicts):
        super().__init__(f"{len(conflicts)} overlapping time range(s) detected")
        self.conflicts = conflicts
