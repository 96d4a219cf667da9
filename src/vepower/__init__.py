"""vePower ledger - time-decaying, lock-based voting power with deferred delegation."""

__version__ = "0.1.0"
