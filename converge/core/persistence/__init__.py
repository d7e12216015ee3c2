"""Persistence — run state file and audit ledger."""
