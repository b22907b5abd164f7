"""Meeting conflict resolution and rescheduling engine."""

__version__ = "0.1.0"
