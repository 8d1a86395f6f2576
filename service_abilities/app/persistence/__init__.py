"""
Persistence package.

Repositories own every read and write of abilities, roles and their
grants. They apply the tenant scope they are constructed with to every
query; callers never filter by tenant themselves.

- base: The repository protocol the clipboard, conductor and cleanup use.
- memory: In-process repository for tests and local development.
- postgres: asyncpg-backed repository.
"""

from .base import AbilityRepository
from .memory import InMemoryRepository

__all__ = ["AbilityRepository", "InMemoryRepository"]
