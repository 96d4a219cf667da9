"""Reporting and export for vePower ledger runs."""
