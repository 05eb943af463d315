# backend/routes/uploads.py
import logging
from typing import Optional
from fastapi import APIRouter, Depends, File, Form as FormField, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_session
from errors import NotFound, ValidationFailed
from models import Form, User
from routes.submissions import check_form_open
from services import drive_service, storage_service, token_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["uploads"])

async def relay_to_drive(session: AsyncSession, form: Form, content: bytes, file: UploadFile) -> dict:
    """Stores a submitter's file in the form owner's Drive, using the owner's credential."""
    if not form.userId:
        raise NotFound("Form not found or has no owner")
    access_token = await token_service.access_token_for_user(session, form.userId)
    service = drive_service.get_drive_service(access_token)
    return drive_service.upload_submission_file(
        service, content, file.content_type, file.filename, form.driveFolderId or None,
    )

@router.post("/api/upload")
async def upload_file(
    file: Optional[UploadFile] = File(None),
    formId: Optional[str] = FormField(None),
    password: Optional[str] = FormField(None),
    session: AsyncSession = Depends(get_session),
):
    if file is None:
        raise ValidationFailed("No file uploaded")
    if not formId:
        raise ValidationFailed("Form ID is required")

    form = await session.get(Form, formId)
    if not form:
        raise NotFound("Form not found")
    check_form_open(form, password)

    content = await file.read()
    upload_config = form.uploadConfig or {}
    storage_service.validate_file(
        file.content_type, len(content),
        upload_config.get("allowedTypes"), storage_service.max_bytes_for(upload_config),
    )

    if form.driveEnabled:
        stored = await relay_to_drive(session, form, content, file)
    else:
        stored = storage_service.save_file(content, file.filename, "uploads")
    logger.info("Accepted %s for form %s (%s)", file.filename, form.id, "drive" if form.driveEnabled else "local")
    return {
        **stored,
        "fileName": file.filename,
        "fileType": file.content_type,
        "fileSize": len(content),
    }

@router.post("/api/upload-logo")
async def upload_logo(logo: Optional[UploadFile] = File(None), current_user: User = Depends(get_current_user)):
    if logo is None:
        raise ValidationFailed("No file provided")
    content = await logo.read()
    return storage_service.save_logo(content, logo.filename, logo.content_type)
