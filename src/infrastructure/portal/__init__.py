from src.infrastructure.portal.in_memory import InMemoryPortalRepository
from src.infrastructure.portal.postgres import PostgresPortalRepository

__all__ = ["InMemoryPortalRepository", "PostgresPortalRepository"]
