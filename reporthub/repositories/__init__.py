from reporthub.repositories.base import ReportCollection
from reporthub.repositories.memory import InMemoryCollection, InMemoryDatabase
from reporthub.repositories.postgres import PostgresCollection

__all__ = [
    "InMemoryCollection",
    "InMemoryDatabase",
    "PostgresCollection",
    "ReportCollection",
]
