"""CRUD operations for database models"""
from . import case
from . import evidence
from . import observable
from . import audit

__all__ = ["case", "evidence", "observable", "audit"]
