# app/crud/__init__.py

from .crud_waitlist_entry import WaitlistStore
from .crud_waitlist_event import WaitlistAuditLog
