# app/db/models/enums.py
import enum


class IndicatorType(str, enum.Enum):
    """Persisted indicator types; the values are wire values and must stay stable"""
    HOSTNAME = "hostname"
    URL = "url"
    MD5 = "md5"
    SHA256 = "sha256"
    HEADER = "header"
    SUBJECT = "subject"
    SENDER = "sender"
    IP = "ip"
    DOMAIN = "domain"


class ThreatLevel(str, enum.Enum):
    BENIGN = "benign"
    SUSPICIOUS = "suspicious"
    MALICIOUS = "malicious"


class CaseStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"
    SEALED = "sealed"


class EvidenceType(str, enum.Enum):
    LOG = "log"
    URL = "url"
    IP = "ip"
    DOMAIN = "domain"
    EMAIL = "email"
    FILE = "file"
    SCRIPT = "script"
    TEXT = "text"
    OTHER = "otro"


class EvidenceVerdict(str, enum.Enum):
    PENDING = "pendiente"
    RELEVANT = "relevante"
    DISCARDED = "descartada"


class AuditAction(str, enum.Enum):
    """Audit log actions emitted by the API"""
    CASE_CREATED = "create:case"
    CASE_UPDATED = "update:case"
    CASE_DELETED = "delete:case"
    EVIDENCE_CREATED = "create:evidence"
    EVIDENCE_UPDATED = "update:evidence"
    EVIDENCE_DELETED = "delete:evidence"
    OBSERVABLE_CREATED = "create:observable"
    OBSERVABLE_DELETED = "delete:observable"


def enum_values(enum_cls):
    """values_callable for SQLAlchemy Enum columns so the wire value is what gets stored"""
    return [member.value for member in enum_cls]
