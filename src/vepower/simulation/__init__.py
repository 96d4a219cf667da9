"""Seeded scenario simulation for the vePower ledger."""
