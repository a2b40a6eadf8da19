"""Browser page for managing documents."""
from pathlib import Path

from fastapi import APIRouter
from fastapi.responses import HTMLResponse

STATIC_DIR = Path(__file__).resolve().parent.parent / "static"

router = APIRouter(tags=["ui"])


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
async def index():
    """Serve the single-page document manager."""
    return HTMLResponse((STATIC_DIR / "index.html").read_text(encoding="utf-8"))
