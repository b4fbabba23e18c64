"""chatrelay: streaming agent-run reconciliation for chat clients."""

__version__ = "0.1.0"
