"""Support conversation synchronisation and SLA escalation service."""

from .__version__ import __version__

__all__ = ["__version__"]
