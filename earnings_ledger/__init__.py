"""Payment-event-driven earnings ledger for the designer marketplace."""

__version__ = "0.1.0"
