"""PostgreSQL connection and schema."""
from .connection import db, Database
from .models import init_db, SCHEMA

__all__ = ["db", "Database", "init_db", "SCHEMA"]
