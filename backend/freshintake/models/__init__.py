"""Aggregate model imports for Alembic auto-detection."""

# Reference data
from freshintake.models.client import Client  # noqa: F401
from freshintake.models.produce import Produce  # noqa: F401

# Receiving
from freshintake.models.receiving import ReceivingItem, ReceivingRecord  # noqa: F401
from freshintake.models.receiving_draft import ReceivingDraft  # noqa: F401
