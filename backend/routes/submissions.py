# backend/routes/submissions.py
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr
from sqlmodel import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from database import get_session
from errors import Forbidden, FormClosed, NotFound, ValidationFailed
from models import Form, Submission, User, as_utc, utcnow

logger = logging.getLogger(__name__)
router = APIRouter(tags=["submissions"])

class SubmitRequest(BaseModel):
    formId: Optional[str] = None
    fileUrl: Optional[str] = None
    fileId: Optional[str] = None
    fileName: Optional[str] = None
    fileType: Optional[str] = None
    fileSize: Optional[int] = None
    files: Optional[List[Dict[str, Any]]] = None
    answers: Optional[List[Dict[str, Any]]] = None
    submitterName: Optional[str] = None
    submitterEmail: Optional[EmailStr] = None
    metadata: Optional[Dict[str, Any]] = None
    password: Optional[str] = None

def primary_file(request: SubmitRequest) -> dict:
    """Picks the first entry of ``files``, falling back to the flat file fields."""
    if request.files:
        first = request.files[0]
        return {
            "url": first.get("url"),
            "id": first.get("id") or first.get("fileId"),
            "name": first.get("name") or first.get("fileName"),
            "type": first.get("type") or first.get("fileType"),
            "size": first.get("size") or first.get("fileSize"),
        }
    return {
        "url": request.fileUrl, "id": request.fileId, "name": request.fileName,
        "type": request.fileType, "size": request.fileSize,
    }

def check_form_open(form: Form, password: Optional[str], now: Optional[datetime] = None):
    now = as_utc(now) or utcnow()
    if not form.isActive:
        raise FormClosed("This form is no longer accepting submissions")
    if form.expiryDate and as_utc(form.expiryDate) < now:
        raise FormClosed("This form has expired")
    if form.accessLevel == "password" and password != form.password:
        raise Forbidden("Incorrect form password")

def submission_to_dict(submission: Submission, form_title: Optional[str] = None) -> dict:
    data = submission.model_dump(exclude={"metadata_"})
    data["metadata"] = submission.metadata_ or {}
    data["submittedAt"] = as_utc(submission.submittedAt)
    if form_title is not None:
        data["form"] = {"title": form_title}
        data["formTitle"] = form_title
    return data

@router.post("/api/submit", status_code=201)
async def submit_form(request: SubmitRequest, session: AsyncSession = Depends(get_session)):
    if not request.formId:
        raise ValidationFailed("Missing form ID")
    primary = primary_file(request)
    if not primary["url"] or not primary["name"]:
        raise ValidationFailed("Missing file data")

    form = await session.get(Form, request.formId)
    if not form:
        raise NotFound("Form not found")
    check_form_open(form, request.password)

    submission = Submission(
        formId=form.id,
        fileUrl=primary["url"], fileId=primary["id"], fileName=primary["name"],
        fileType=primary["type"] or "unknown", fileSize=int(primary["size"] or 0),
        files=request.files or [primary],
        answers=request.answers or [],
        submitterName=request.submitterName,
        submitterEmail=request.submitterEmail,
        metadata_=request.metadata or {},
    )
    session.add(submission)
    await session.commit()
    await session.refresh(submission)
    logger.info("Recorded submission %s for form %s", submission.id, form.id)
    return submission_to_dict(submission)

@router.get("/api/submissions")
async def list_submissions(
    formId: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    statement = (
        select(Submission, Form.title)
        .join(Form, Submission.formId == Form.id)
        .where(Form.userId == current_user.id)
    )
    if formId:
        statement = statement.where(Submission.formId == formId)
    result = await session.execute(statement.order_by(Submission.submittedAt.desc(), Submission.id.desc()))
    return [submission_to_dict(submission, title) for submission, title in result.all()]
