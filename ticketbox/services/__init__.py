"""Infrastructure services."""

from .postgres import PostgresConnectionTester, create_pool

__all__ = ["PostgresConnectionTester", "create_pool"]
