"""Export API endpoints.

Exports run in the background on the server's event loop; clients poll
GET /exports/{id} for progress. Validation happens before the export is
created, so an unexportable timeline is rejected with 400 immediately.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status

from clipforge.schemas.exports import ExportCreateRequest, ExportJobResponse, ExportListResponse
from clipforge.services.export_manager import ExportManager, get_export_manager

router = APIRouter()
logger = logging.getLogger(__name__)

Manager = Annotated[ExportManager, Depends(get_export_manager)]


@router.post(
    "/exports",
    response_model=ExportJobResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_export(request: ExportCreateRequest, manager: Manager) -> ExportJobResponse:
    """Validate a timeline and start exporting it."""
    handle = manager.create_export(request)
    return manager.to_response(handle)


@router.get("/exports", response_model=ExportListResponse)
async def list_exports(manager: Manager) -> ExportListResponse:
    """List running and recent exports, newest first."""
    return ExportListResponse(exports=[manager.to_response(h) for h in manager.list_exports()])


@router.get("/exports/{export_id}", response_model=ExportJobResponse)
async def get_export(export_id: str, manager: Manager) -> ExportJobResponse:
    return manager.to_response(manager.get_export(export_id))


@router.post("/exports/{export_id}/cancel", response_model=ExportJobResponse)
async def cancel_export(export_id: str, manager: Manager) -> ExportJobResponse:
    """Cancel a running export. The work directory is removed and no output is written."""
    handle = manager.cancel(export_id)
    logger.info(f"[EXPORT] Cancel requested via API: {export_id}")
    return manager.to_response(handle)
