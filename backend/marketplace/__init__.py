"""Credit marketplace backend: entitlement, pricing, ledger and revision core."""

__version__ = "0.1.0"
