from backend.app.db.base_class import Base

# Import models to register metadata for Base.metadata.create_all in tests
from backend.app.models.user import User  # noqa: F401
from backend.app.models.insurance import Insurance  # noqa: F401
from backend.app.models.client import Client  # noqa: F401
from backend.app.models.provider import Provider  # noqa: F401
from backend.app.models.timesheet import Timesheet  # noqa: F401
from backend.app.models.time_entry import TimeEntry  # noqa: F401
from backend.app.models.invoice import Invoice  # noqa: F401
from backend.app.models.invoice_entry import InvoiceEntry  # noqa: F401
from backend.app.models.invoice_adjustment import InvoiceAdjustment  # noqa: F401
from backend.app.models.payment import Payment  # noqa: F401
from backend.app.models.queue_item import QueueItem  # noqa: F401
from backend.app.models.sequence import Sequence  # noqa: F401
from backend.app.models.audit_log import AuditLog  # noqa: F401
