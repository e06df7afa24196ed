"""PostgreSQL storage layer."""

from digester.storage.database import Database
from digester.storage.errors import InsertError, InsertErrorKind
from digester.storage.repository import DigesterRepository

__all__ = ["Database", "DigesterRepository", "InsertError", "InsertErrorKind"]
