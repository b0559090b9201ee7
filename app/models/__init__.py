"""SQLAlchemy ORM models.

Individual models should be imported explicitly:
    from app.models.company import Company

All models are imported here so Alembic can detect them during migration
autogenerate. This module is imported by alembic/env.py.
"""

from app.models.company import Company
from app.models.list_record import ListRecord
from app.models.outbound_message import OutboundMessage
from app.models.phone_session import PhoneSession

__all__ = [
    "Company",
    "PhoneSession",
    "ListRecord",
    "OutboundMessage",
]
