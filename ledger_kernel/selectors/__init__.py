"""Read-only query selectors over the ledger."""
