"""Route modules exposed by the operations API."""

from . import metrics, ping, tickets

__all__ = ["metrics", "ping", "tickets"]
