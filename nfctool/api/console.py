"""API route running one console command line."""

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter(tags=["console"])


class ConsoleRequest(BaseModel):
    line: str


@router.post("/api/console")
def run_command(req: ConsoleRequest, request: Request):
    """Execute a console line and return its report lines."""
    return {"lines": request.app.state.dispatcher.execute(req.line)}
