# app/api/v1/endpoints/observables.py
"""Canonical observable (IOC) endpoints"""
from fastapi import APIRouter, Depends, HTTPException, Response, status, Path
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from uuid import UUID
from loguru import logger

from app.db.database import get_db
from app.db import crud
from app.api.v1.dependencies import get_correlation_engine
from app.api.v1.schemas.observables import (
    ObservableResponse, ExtractionRequest, ExtractedIndicatorResponse
)
from app.core.correlation import CorrelationEngine
from app.core.ioc_classifier import extract_indicators, file_hash_indicators
from app.exceptions.correlation import ObservableNotFoundError

router = APIRouter()


@router.get("/", response_model=List[ObservableResponse])
async def list_observables(engine: CorrelationEngine = Depends(get_correlation_engine)):
    """List observables, most recently seen first, with the cases they appear in"""
    try:
        enriched = await engine.list_observables()
        return [ObservableResponse.from_model(observable, related) for observable, related in enriched]

    except Exception as e:
        logger.error(f"Failed to list observables: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve observables"
        )


@router.post("/extract", response_model=List[ExtractedIndicatorResponse])
async def extract_observables(request: ExtractionRequest):
    """Classify indicators found in text and attachment hashes; nothing is stored"""
    found = extract_indicators(request.text) + file_hash_indicators(request.files)
    seen = set()
    response = []
    for indicator in found:
        if indicator.value in seen:
            continue
        seen.add(indicator.value)
        response.append(ExtractedIndicatorResponse(value=indicator.value, type=indicator.type))
    return response


@router.get("/{observable_id}", response_model=ObservableResponse)
async def get_observable(
    observable_id: UUID = Path(..., description="Observable UUID"),
    db: AsyncSession = Depends(get_db),
    engine: CorrelationEngine = Depends(get_correlation_engine)
):
    """Get one observable with its related cases"""
    observable = await crud.observable.get_observable_by_uuid(db, observable_id)
    if not observable:
        raise ObservableNotFoundError()

    enriched = await engine.get_observable(observable.id)
    if enriched is None:
        raise ObservableNotFoundError()

    observable, related = enriched
    return ObservableResponse.from_model(observable, related)


@router.delete("/{observable_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_observable(
    observable_id: UUID = Path(..., description="Observable UUID"),
    db: AsyncSession = Depends(get_db),
    engine: CorrelationEngine = Depends(get_correlation_engine)
):
    """Delete an observable; its evidence links go with it. Deleting a missing id is a no-op"""
    observable = await crud.observable.get_observable_by_uuid(db, observable_id)
    if not observable:
        logger.info(f"Observable {observable_id} already absent, nothing to delete")
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    try:
        deleted = await engine.delete_observable(observable.id, observable_uuid=observable.uuid)
    except Exception as e:
        logger.error(f"Failed to delete observable {observable_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete observable"
        )

    if deleted:
        logger.info(f"Observable deleted: {observable_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
