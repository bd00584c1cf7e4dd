# app/models/__init__.py
# Import all models so Base.metadata knows every table.

from app.db.base_class import Base
from app.models.waitlist_entry import WaitlistEntry
from app.models.waitlist_lifecycle_event import WaitlistLifecycleEvent
