# backend/routes/drive.py
import logging
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

import settings
from auth import get_current_user
from database import get_session
from errors import ValidationFailed
from models import User
from services import drive_service, token_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["drive"])

@router.get("/api/drive/token")
async def get_drive_token(current_user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    account = await token_service.get_account(session, current_user.id)
    access = await token_service.get_valid_access_token(session, account)
    return {"accessToken": access.token, "expiresAt": access.expires_at, "refreshed": access.refreshed}

@router.get("/api/drive/picker-config")
async def get_picker_config(current_user: User = Depends(get_current_user)):
    return {"apiKey": settings.GOOGLE_PICKER_API_KEY, "clientId": settings.GOOGLE_CLIENT_ID}

@router.post("/api/drive/upload-asset")
async def upload_asset(
    file: Optional[UploadFile] = File(None),
    parentFolderId: Optional[str] = Form(None),
    formTitle: Optional[str] = Form(None),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    if file is None:
        raise ValidationFailed("No file provided")
    access_token = await token_service.access_token_for_user(session, current_user.id)
    service = drive_service.get_drive_service(access_token)
    content = await file.read()
    return drive_service.upload_asset(
        service, content, file.content_type, file.filename or "unnamed_file",
        parent_folder_id=parentFolderId or None, form_title=formTitle or None,
    )

@router.get("/api/images/{file_id}")
async def proxy_image(file_id: str):
    content, content_type = await drive_service.fetch_public_file(file_id)
    return Response(content=content, media_type=content_type, headers={"Cache-Control": "public, max-age=3600"})
