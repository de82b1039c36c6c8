"""API routes for tag operations: scan, dump, key audit, NDEF, write, clone."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from nfctool.config import SCAN_TIMEOUT_MS, SCANALL_TIMEOUT_MS
from nfctool.errors import NotPresentError, OversizeInputError, PreconditionError, TagToolError
from nfctool.session.service import TagService

router = APIRouter(prefix="/api/tags", tags=["tags"])

_STATUS_CODES = (
    (NotPresentError, 404),
    (PreconditionError, 409),
    (OversizeInputError, 413),
)


def http_error(e: TagToolError) -> HTTPException:
    """Map a tag error onto an HTTP status; reader-side failures become 502."""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(e, error_type):
            return HTTPException(status_code=status_code, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


def get_service(request: Request) -> TagService:
    return request.app.state.dispatcher.service


# ──────────────────────────────────────────────
# Request/Response models
# ──────────────────────────────────────────────

class ScanRequest(BaseModel):
    timeout_ms: int = SCAN_TIMEOUT_MS


class ScanAllRequest(BaseModel):
    timeout_ms: int = SCANALL_TIMEOUT_MS


class WriteRequest(BaseModel):
    record_type: str  # "URL" or "TEXT"
    content: str


# ──────────────────────────────────────────────
# Routes
# ──────────────────────────────────────────────
# Plain ``def`` handlers: reader calls block, so FastAPI runs them in its
# threadpool and the session lock serialises them.

@router.post("/scan")
def scan_tag(req: Optional[ScanRequest] = None, service: TagService = Depends(get_service)):
    """Poll for an ISO 14443A tag and make it the current tag."""
    try:
        req = req or ScanRequest()
        return service.scan(req.timeout_ms).to_dict()
    except TagToolError as e:
        raise http_error(e)


@router.post("/scanall")
def scan_all(req: Optional[ScanAllRequest] = None, service: TagService = Depends(get_service)):
    """Poll ISO 14443A, ISO 14443B and FeliCa."""
    try:
        req = req or ScanAllRequest()
        return {"protocols": [scan.to_dict() for scan in service.scan_all(req.timeout_ms)]}
    except TagToolError as e:
        raise http_error(e)


@router.post("/dump")
def dump_tag(service: TagService = Depends(get_service)):
    """Dump the current tag's memory."""
    try:
        dump = service.dump()
        return {**dump.to_dict(), "lines": dump.format_lines()}
    except TagToolError as e:
        raise http_error(e)


@router.post("/keys")
def audit_keys(service: TagService = Depends(get_service)):
    """Report which known keys open each sector of the current Classic tag."""
    try:
        audit = service.audit()
        return {**audit.to_dict(), "lines": audit.format_lines()}
    except TagToolError as e:
        raise http_error(e)


@router.post("/ndef")
def read_ndef(service: TagService = Depends(get_service)):
    """Decode the NDEF message on the current tag."""
    try:
        return service.read_ndef().to_dict()
    except TagToolError as e:
        raise http_error(e)


@router.post("/write")
def write_ndef(req: WriteRequest, service: TagService = Depends(get_service)):
    """Write a single URL or Text record to the current tag."""
    try:
        return service.write_ndef(req.record_type, req.content).to_dict()
    except TagToolError as e:
        raise http_error(e)


@router.post("/clone/read")
def clone_read(service: TagService = Depends(get_service)):
    """Capture the current tag into the clone buffer."""
    try:
        return service.clone_read().to_dict()
    except TagToolError as e:
        raise http_error(e)


@router.post("/clone/write")
def clone_write(req: Optional[ScanRequest] = None, service: TagService = Depends(get_service)):
    """Write the clone buffer to the tag on the reader."""
    try:
        req = req or ScanRequest()
        return service.clone_write(req.timeout_ms).to_dict()
    except TagToolError as e:
        raise http_error(e)


@router.get("/session")
def session_state(service: TagService = Depends(get_service)):
    """Current tag and clone buffer summary."""
    with service.state.lock:
        return service.state.to_dict()
