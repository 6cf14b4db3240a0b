"""anchorage - content-addressed artifact anchoring with ledger reconciliation."""

__version__ = "0.1.0"
