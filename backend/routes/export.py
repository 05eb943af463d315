# backend/routes/export.py
import time
import logging
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_session
from errors import EmptyInput
from models import User
from services import drive_service, sheets_service, token_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["export"])

class ExportRequest(BaseModel):
    formId: Optional[str] = None
    submissions: List[Dict[str, Any]] = []

@router.post("/api/export/google-sheet")
async def export_google_sheet(
    request: ExportRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    started = time.monotonic()
    if not request.submissions:
        raise EmptyInput("No submissions provided")
    logger.info("Starting export of %d submissions", len(request.submissions))
    access_token = await token_service.access_token_for_user(session, current_user.id)
    service = drive_service.get_sheets_service(access_token)
    result = sheets_service.export_submissions(service, request.submissions, form_id=request.formId)
    return {"success": True, **result, "exportTime": int((time.monotonic() - started) * 1000)}
