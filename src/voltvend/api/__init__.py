"""HTTP adapter for the capacity ledger."""
