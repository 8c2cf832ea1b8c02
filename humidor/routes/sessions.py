"""
/sessions endpoints: the add-a-cigar flow.

capture (POST /sessions) → identify → feedback / reanalyze → save, or cancel.
"""

import io
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from PIL import Image, UnidentifiedImageError
from pillow_heif import register_heif_opener

from ..config import Config
from ..models import FeedbackRequest, ReanalyzeRequest, SaveRequest, SaveResponse, SessionResponse
from ..services.errors import (
    ExtractionError,
    HumidorError,
    IdentificationCancelled,
    InvalidTransition,
    PersistenceError,
    SessionBusyError,
    SessionNotFound,
)
from ..services.session import SessionManager
from .dependencies import get_session_manager

logger = logging.getLogger(__name__)
router = APIRouter()

# Register HEIF/HEIC opener with Pillow
register_heif_opener()


def convert_heic_to_jpeg(image_bytes: bytes, content_type: str) -> bytes:
    """
    Convert HEIC/HEIF captures to JPEG. Pass through other formats unchanged.

    Raises:
        ValueError: If a HEIC/HEIF payload cannot be decoded.
    """
    if content_type not in ("image/heic", "image/heif"):
        return image_bytes

    try:
        img = Image.open(io.BytesIO(image_bytes))
    except UnidentifiedImageError as e:
        raise ValueError(f"Unreadable HEIC image: {e}") from e

    # Convert to RGB (HEIC may have alpha channel)
    if img.mode in ("RGBA", "P"):
        img = img.convert("RGB")

    output = io.BytesIO()
    img.save(output, format="JPEG", quality=90)
    return output.getvalue()


def _parse_interests(raw: Optional[str]) -> list[str]:
    return [i.strip() for i in (raw or "").split(",") if i.strip()]


def to_http_error(e: Exception) -> HTTPException:
    """Map service errors onto HTTP status codes."""
    if isinstance(e, SessionNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (SessionBusyError, InvalidTransition, IdentificationCancelled)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ExtractionError):
        return HTTPException(status_code=502, detail="We couldn't read that cigar band. Please try again.")
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=500, detail="Your cigar could not be saved. Please try again.")
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Unhandled service error: {e}", exc_info=True)
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/sessions", response_model=SessionResponse)
async def create_session(
    image: UploadFile = File(..., description="Photo of the cigar band"),
    user_id: str = Form(..., min_length=1),
    interests: Optional[str] = Form(None, description="Comma-separated smoker interests"),
    manager: SessionManager = Depends(get_session_manager),
) -> SessionResponse:
    """Capture an image and open an add-a-cigar session."""
    if image.content_type not in Config.ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=400,
            detail="Invalid image type. Only JPEG, PNG and HEIC are supported."
        )

    try:
        image_bytes = await image.read()
    except IOError as e:
        logger.error(f"Failed to read uploaded image: {e}")
        raise HTTPException(status_code=400, detail="Failed to read image file")

    if not image_bytes:
        raise HTTPException(status_code=400, detail="Empty image file")
    if len(image_bytes) > Config.MAX_IMAGE_SIZE_BYTES:
        raise HTTPException(
            status_code=400,
            detail=f"Image too large. Maximum size is {Config.MAX_IMAGE_SIZE_MB}MB."
        )

    try:
        image_bytes = convert_heic_to_jpeg(image_bytes, image.content_type)
    except ValueError as e:
        logger.warning(f"Invalid image format: {e}")
        raise HTTPException(status_code=400, detail="Invalid image format")

    try:
        session = manager.create(user_id, image_bytes, image.filename, _parse_interests(interests))
    except OSError as e:
        logger.error(f"Could not cache captured image: {e}")
        raise HTTPException(status_code=500, detail="Could not store the captured image")
    return session.to_response()


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, manager: SessionManager = Depends(get_session_manager)) -> SessionResponse:
    try:
        return manager.get(session_id).to_response()
    except SessionNotFound as e:
        raise to_http_error(e)


@router.post("/sessions/{session_id}/identify", response_model=SessionResponse)
async def identify(session_id: str, manager: SessionManager = Depends(get_session_manager)) -> SessionResponse:
    """Run vision + assistant identification for the captured image."""
    try:
        session = await manager.identify(session_id)
    except HumidorError as e:
        raise to_http_error(e)
    return session.to_response()


@router.post("/sessions/{session_id}/reanalyze", response_model=SessionResponse)
async def reanalyze(
    session_id: str,
    request: ReanalyzeRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionResponse:
    """Re-identify using the user's corrected name as a hint."""
    try:
        session = await manager.reanalyze(session_id, request.corrected_name)
    except (HumidorError, ValueError) as e:
        raise to_http_error(e)
    return session.to_response()


@router.post("/sessions/{session_id}/feedback", response_model=SessionResponse)
async def feedback(
    session_id: str,
    request: FeedbackRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionResponse:
    """Thumbs up/down on the identification."""
    try:
        session = manager.give_feedback(session_id, request.feedback)
    except HumidorError as e:
        raise to_http_error(e)
    return session.to_response()


@router.post("/sessions/{session_id}/save", response_model=SaveResponse)
async def save(
    session_id: str,
    request: SaveRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> SaveResponse:
    """Save the reviewed cigar to the user's humidor (remotely or queued locally)."""
    try:
        outcome = await manager.save(session_id, request.full_name, request.notes, request.overall_rating)
    except (HumidorError, ValueError) as e:
        raise to_http_error(e)
    return SaveResponse(status=outcome.status, message=outcome.message, entry=outcome.entry)


@router.delete("/sessions/{session_id}", response_model=SessionResponse)
async def cancel(session_id: str, manager: SessionManager = Depends(get_session_manager)) -> SessionResponse:
    """Cancel the session; an in-flight identification is abandoned."""
    try:
        session = manager.cancel(session_id)
    except HumidorError as e:
        raise to_http_error(e)
    return session.to_response()
