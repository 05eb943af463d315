# backend/routes/forms.py
import logging
from datetime import datetime
from typing import Any, Dict, Literal, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_session
from errors import Forbidden, NotFound
from models import Form, Submission, User, as_utc, utcnow

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/forms", tags=["forms"])

class FormCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    uploadConfig: Dict[str, Any] = {}
    designConfig: Dict[str, Any] = {}
    driveEnabled: bool = False
    driveFolderId: Optional[str] = None
    accessLevel: Literal["public", "password"] = "public"
    password: Optional[str] = None
    expiryDate: Optional[datetime] = None

class FormUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    uploadConfig: Optional[Dict[str, Any]] = None
    designConfig: Optional[Dict[str, Any]] = None
    driveEnabled: Optional[bool] = None
    driveFolderId: Optional[str] = None
    accessLevel: Optional[Literal["public", "password"]] = None
    password: Optional[str] = None
    expiryDate: Optional[datetime] = None
    isActive: Optional[bool] = None

def form_to_dict(form: Form) -> dict:
    data = form.model_dump(exclude={"password"})
    data["uploadConfig"] = form.uploadConfig or {}
    data["designConfig"] = form.designConfig or {}
    for key in ("expiryDate", "createdAt", "updatedAt"):
        data[key] = as_utc(data.get(key))
    return data

async def get_owned_form(session: AsyncSession, form_id: str, user: User) -> Form:
    form = await session.get(Form, form_id)
    if not form:
        raise NotFound("Form not found")
    if form.userId != user.id:
        raise Forbidden("You do not have access to this form")
    return form

@router.post("", status_code=201)
async def create_form(request: FormCreate, current_user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    form = Form(
        userId=current_user.id,
        title=request.title or "Untitled Form",
        description=request.description or "",
        uploadConfig=request.uploadConfig, designConfig=request.designConfig,
        driveEnabled=request.driveEnabled, driveFolderId=request.driveFolderId,
        accessLevel=request.accessLevel, password=request.password, expiryDate=as_utc(request.expiryDate),
    )
    session.add(form)
    await session.commit()
    await session.refresh(form)
    logger.info("User %s created form %s", current_user.id, form.id)
    return form_to_dict(form)

@router.get("")
async def list_forms(current_user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    result = await session.execute(
        select(Form).where(Form.userId == current_user.id).order_by(Form.createdAt.desc())
    )
    return [form_to_dict(f) for f in result.scalars().all()]

@router.get("/{form_id}")
async def get_form(form_id: str, session: AsyncSession = Depends(get_session)):
    form = await session.get(Form, form_id)
    if not form:
        raise NotFound("Form not found")
    return form_to_dict(form)

@router.put("/{form_id}")
async def update_form(
    form_id: str,
    request: FormUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    form = await get_owned_form(session, form_id, current_user)
    for key, value in request.model_dump(exclude_unset=True).items():
        if key in ("uploadConfig", "designConfig") and value is None:
            value = {}
        elif key == "expiryDate":
            value = as_utc(value)
        setattr(form, key, value)
    form.updatedAt = utcnow()
    session.add(form)
    await session.commit()
    await session.refresh(form)
    return form_to_dict(form)

@router.delete("/{form_id}")
async def delete_form(form_id: str, current_user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    form = await get_owned_form(session, form_id, current_user)
    result = await session.execute(select(Submission).where(Submission.formId == form.id))
    for submission in result.scalars().all():
        await session.delete(submission)
    await session.delete(form)
    await session.commit()
    logger.info("User %s deleted form %s", current_user.id, form_id)
    return {"success": True}
