# backend/routes/config.py
from typing import Any, Dict
from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_session
from models import AppConfig, User, utcnow

router = APIRouter(prefix="/api/config", tags=["config"])

DEFAULT_CONFIG: Dict[str, Any] = {
    "name": "General Upload Form",
    "description": "Please upload your project files here. Supported formats: PDF, PNG, JPG.",
    "allowedTypes": ["image/png", "image/jpeg", "application/pdf"],
    "isPasswordProtected": False,
    "isCaptchaEnabled": False,
    "enableSubmitAnother": True,
    "design": {
        "primaryColor": "#4f46e5",
        "backgroundColor": "#ffffff",
        "fontFamily": "Inter",
        "logoUrl": None,
    },
}

async def load_config(session: AsyncSession) -> Dict[str, Any]:
    row = await session.get(AppConfig, 1)
    return {**DEFAULT_CONFIG, **(row.data if row else {})}

@router.get("")
async def get_config(session: AsyncSession = Depends(get_session)):
    return await load_config(session)

@router.post("")
async def update_config(
    body: Dict[str, Any] = Body(...),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    row = await session.get(AppConfig, 1)
    if row is None:
        row = AppConfig(id=1, data={})
    row.data = {**(row.data or {}), **body}
    row.updatedAt = utcnow()
    session.add(row)
    await session.commit()
    return {"success": True, "config": {**DEFAULT_CONFIG, **row.data}}
