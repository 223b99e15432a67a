# app/api/v1/dependencies.py
"""Request-scoped dependencies shared by the v1 endpoints"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import AuditTrail
from app.core.correlation import CorrelationEngine
from app.db.database import get_db
from app.db.repository import SQLAlchemyObservableRepository


async def get_correlation_engine(db: AsyncSession = Depends(get_db)) -> CorrelationEngine:
    """Correlation engine bound to the request's session, with a fresh audit trail"""
    return CorrelationEngine(SQLAlchemyObservableRepository(db), audit=AuditTrail())
