"""hostforge — idempotent host-bootstrap orchestrator."""

__version__ = "0.1.0"
