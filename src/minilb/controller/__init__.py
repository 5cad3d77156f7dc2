"""Service status reconciliation."""
