# app/api/v1/schemas/audit.py
from typing import Any, Dict, Optional
from datetime import datetime

from app.api.v1.schemas.common import CamelModel


class AuditLogResponse(CamelModel):
    id: int
    ts: datetime
    action: str
    actor: str
    payload: Dict[str, Any]
    case_id: Optional[str] = None
