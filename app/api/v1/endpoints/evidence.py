# app/api/v1/endpoints/evidence.py
"""Evidence endpoints; every write is correlated into the observable store"""
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from uuid import UUID
from loguru import logger

from app.core.config import settings
from app.db.database import get_db
from app.db import crud
from app.db.models.enums import AuditAction, ThreatLevel
from app.db.records import IndicatorCandidate
from app.api.v1.dependencies import get_correlation_engine
from app.api.v1.schemas.evidence import EvidenceCreate, EvidenceUpdate, EvidenceResponse
from app.api.v1.schemas.observables import ObservableCandidate
from app.core.correlation import CorrelationEngine, build_candidates
from app.exceptions.correlation import (
    IngestionError, ObservableProcessingError, CaseNotFoundError, EvidenceNotFoundError
)

router = APIRouter()


def _collect_candidates(
        observables: List[ObservableCandidate],
        content: Optional[str],
        files,
        extract: Optional[bool],
        source: Optional[str]
) -> List[IndicatorCandidate]:
    explicit = [
        IndicatorCandidate(
            value=item.threat_value,
            type=item.threat_type,
            threat_level=item.threat_level,
            source=item.source,
        )
        for item in observables
        if item.threat_value
    ]
    return build_candidates(
        explicit,
        content=content,
        files=files,
        extract=settings.AUTO_EXTRACT_OBSERVABLES if extract is None else extract,
        threat_level=ThreatLevel(settings.DEFAULT_THREAT_LEVEL),
        source=source,
    )


@router.post("/", response_model=EvidenceResponse, status_code=status.HTTP_201_CREATED)
async def create_evidence(
    evidence_data: EvidenceCreate,
    db: AsyncSession = Depends(get_db),
    engine: CorrelationEngine = Depends(get_correlation_engine)
):
    """Create evidence and correlate its observables in the same transaction"""
    case = await crud.case.get_case_by_uuid(db, evidence_data.case_id)
    if not case:
        raise CaseNotFoundError()

    try:
        evidence = await crud.evidence.create_evidence(db, evidence_data, case)

        candidates = _collect_candidates(
            evidence_data.observables,
            evidence_data.content,
            evidence_data.files,
            evidence_data.extract_observables,
            evidence_data.source,
        )
        engine.audit.notify(
            AuditAction.EVIDENCE_CREATED,
            {"id": str(evidence.uuid), "title": evidence.title, "observables": len(candidates)},
            case_id=case.uuid
        )
        results = await engine.process_evidence(evidence.id, candidates)

        return EvidenceResponse.from_model(evidence, [result.uuid for result in results])

    except IngestionError as e:
        logger.error(f"Evidence rejected, observables could not be stored: {e}")
        raise ObservableProcessingError()
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to create evidence: {e}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create evidence"
        )


@router.get("/", response_model=List[EvidenceResponse])
async def list_evidence(
    case_id: Optional[UUID] = Query(None, alias="caseId", description="Filter by case UUID"),
    db: AsyncSession = Depends(get_db)
):
    """List evidence, newest observation first"""
    internal_case_id = None
    if case_id:
        case = await crud.case.get_case_by_uuid(db, case_id)
        if not case:
            raise CaseNotFoundError()
        internal_case_id = case.id

    evidence_items = await crud.evidence.list_evidence(db, case_id=internal_case_id)
    linked = await crud.observable.get_linked_observable_uuids(db, [item.id for item in evidence_items])
    return [EvidenceResponse.from_model(item, linked.get(item.id, [])) for item in evidence_items]


@router.get("/{evidence_id}", response_model=EvidenceResponse)
async def get_evidence(
    evidence_id: UUID = Path(..., description="Evidence UUID"),
    db: AsyncSession = Depends(get_db)
):
    """Get evidence with the observables linked to it"""
    evidence = await crud.evidence.get_evidence_by_uuid(db, evidence_id)
    if not evidence:
        raise EvidenceNotFoundError()

    linked = await crud.observable.get_linked_observable_uuids(db, [evidence.id])
    return EvidenceResponse.from_model(evidence, linked.get(evidence.id, []))


@router.put("/{evidence_id}", response_model=EvidenceResponse)
async def update_evidence(
    evidence_update: EvidenceUpdate,
    evidence_id: UUID = Path(..., description="Evidence UUID"),
    db: AsyncSession = Depends(get_db),
    engine: CorrelationEngine = Depends(get_correlation_engine)
):
    """
    Update evidence and correlate any observables it now carries.

    Only submitted content and attachments are scanned. Existing links are
    kept and recounted, since the evidence may have moved to another case.
    """
    evidence = await crud.evidence.get_evidence_by_uuid(db, evidence_id)
    if not evidence:
        raise EvidenceNotFoundError()

    case = None
    if evidence_update.case_id:
        case = await crud.case.get_case_by_uuid(db, evidence_update.case_id)
        if not case:
            raise CaseNotFoundError()

    submitted = evidence_update.model_fields_set
    try:
        evidence = await crud.evidence.update_evidence(db, evidence, evidence_update, case=case)

        candidates = _collect_candidates(
            evidence_update.observables,
            evidence_update.content if "content" in submitted else None,
            evidence_update.files if "files" in submitted else None,
            evidence_update.extract_observables,
            evidence.source,
        )
        engine.audit.notify(
            AuditAction.EVIDENCE_UPDATED,
            {"id": str(evidence.uuid), "fields": sorted(submitted - {"observables", "extract_observables"})},
            case_id=evidence.case.uuid
        )
        await engine.process_evidence(evidence.id, candidates, recount_linked=True)

        linked = await crud.observable.get_linked_observable_uuids(db, [evidence.id])
        return EvidenceResponse.from_model(evidence, linked.get(evidence.id, []))

    except IngestionError as e:
        logger.error(f"Evidence update rejected, observables could not be stored: {e}")
        raise ObservableProcessingError()
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to update evidence {evidence_id}: {e}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update evidence"
        )


@router.delete("/{evidence_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_evidence(
    evidence_id: UUID = Path(..., description="Evidence UUID"),
    db: AsyncSession = Depends(get_db),
    engine: CorrelationEngine = Depends(get_correlation_engine)
):
    """Delete evidence and recount the observables it referenced"""
    evidence = await crud.evidence.get_evidence_by_uuid(db, evidence_id)
    if not evidence:
        raise EvidenceNotFoundError()

    engine.audit.notify(
        AuditAction.EVIDENCE_DELETED,
        {"id": str(evidence.uuid), "title": evidence.title},
        case_id=evidence.case.uuid
    )
    try:
        deleted = await engine.remove_evidence(evidence.id)
    except Exception as e:
        logger.error(f"Failed to delete evidence {evidence_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete evidence"
        )

    if not deleted:
        raise EvidenceNotFoundError()

    return Response(status_code=status.HTTP_204_NO_CONTENT)
