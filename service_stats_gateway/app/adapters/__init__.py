"""
Adapters package for the gate.

Contains the lookup contract the authorization pipeline depends on and its
implementations:

- InMemoryAccessDirectory: seeded dictionaries, used locally and in tests
- PostgresAccessDirectory: asyncpg reads against the account database

Adapters translate storage failures into ``CollaboratorUnavailableError`` and
never decide access themselves.
"""

from .directory import AccessDirectory
from .memory_directory import InMemoryAccessDirectory
from .postgres_directory import PostgresAccessDirectory, hash_api_key

__all__ = [
    "AccessDirectory",
    "InMemoryAccessDirectory",
    "PostgresAccessDirectory",
    "hash_api_key",
]
