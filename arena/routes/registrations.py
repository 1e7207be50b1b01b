"""
Player-facing registration API: submit, look up, upload and remove
verification images, cancel.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from arena.bootstrap import Services
from arena.errors import ValidationError, registration_not_found
from arena.routes.deps import get_db, get_services
from arena.schemas.registration import CancelRequest, SubmitRegistrationRequest
from arena.services import registration_queries

router = APIRouter(prefix="/api/registrations", tags=["registrations"])

MAX_IMAGE_BYTES = 5 * 1024 * 1024
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp"}


@router.post("/{tournament_id}", status_code=status.HTTP_201_CREATED)
async def submit_registration(
    tournament_id: int,
    request: SubmitRegistrationRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    registration = await services.lifecycle.submit(db, tournament_id, request.user_id, request.team)
    return {
        "success": True,
        "message": "Registration submitted. Upload all 8 verification images to complete it.",
        "registration": registration.to_dict(),
    }


@router.get("/{tournament_id}/me")
async def get_my_registration(
    tournament_id: int,
    user_id: str = Query(..., min_length=1, max_length=64),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    registration = await registration_queries.get_user_registration(db, tournament_id, user_id)
    return {
        "success": True,
        "registered": registration is not None,
        "registration": registration.to_dict() if registration else None,
    }


@router.get("/entry/{registration_id}")
async def get_registration(
    registration_id: int,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    registration = await registration_queries.get_registration(db, registration_id)
    if registration is None:
        raise registration_not_found(registration_id)
    return {"success": True, "registration": registration.to_dict()}


@router.post("/entry/{registration_id}/images")
async def upload_image(
    registration_id: int,
    user_id: str = Form(...),
    slot: str = Form(...),
    image_number: int = Form(...),
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """
    Upload one verification screenshot for (slot, image_number).

    Re-uploading the same key replaces the previous image. The registration
    moves to images_uploaded once all eight images are present.
    """
    content_type = file.content_type or "application/octet-stream"
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError(f"Unsupported image type '{content_type}'")
    data = await file.read(MAX_IMAGE_BYTES + 1)
    if not data:
        raise ValidationError("Uploaded file is empty")
    if len(data) > MAX_IMAGE_BYTES:
        raise ValidationError(f"Image exceeds {MAX_IMAGE_BYTES // (1024 * 1024)}MB limit")

    registration = await services.lifecycle.upload_image(
        db, registration_id, slot, image_number, data, content_type, user_id=user_id
    )
    return {"success": True, "registration": registration.to_dict()}


@router.delete("/entry/{registration_id}/images/{image_id}")
async def delete_image(
    registration_id: int,
    image_id: int,
    user_id: str = Query(..., min_length=1, max_length=64),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    registration = await services.lifecycle.detach_image(db, registration_id, image_id, user_id=user_id)
    return {"success": True, "registration": registration.to_dict()}


@router.post("/entry/{registration_id}/cancel")
async def cancel_registration(
    registration_id: int,
    request: CancelRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
) -> Dict[str, Any]:
    """Withdraw a pending registration and free its slot."""
    result = await services.lifecycle.cancel(db, registration_id, request.user_id)
    return {"success": True, **result}
