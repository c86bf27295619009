from pathlib import Path
from typing import Optional, Set

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse
from fastapi.routing import APIRoute

router = APIRouter(tags=["site"])

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _resolve(root: Path, full_path: str) -> Optional[Path]:
    """Map a URL path onto a file under root, refusing anything that escapes it."""
    if not full_path:
        return None
    candidate = (root / full_path).resolve()
    if root not in candidate.parents or not candidate.is_file():
        return None
    return candidate


def _allowed_methods(request: Request) -> Set[str]:
    """Methods of the real API routes whose path matches this request."""
    methods: Set[str] = set()
    for route in request.app.routes:
        if not isinstance(route, APIRoute) or route.endpoint in (api_not_found, site):
            continue
        if route.path_regex.match(request.url.path):
            methods |= route.methods or set()
    return methods


@router.api_route("/api", methods=ALL_METHODS, include_in_schema=False)
@router.api_route("/api/{rest:path}", methods=ALL_METHODS, include_in_schema=False)
async def api_not_found(request: Request):
    allowed = _allowed_methods(request)
    if allowed:
        raise HTTPException(status_code=405, detail="Method Not Allowed", headers={"Allow": ", ".join(sorted(allowed))})
    raise HTTPException(status_code=404, detail="API endpoint not found")


@router.get("/{full_path:path}", include_in_schema=False)
async def site(full_path: str, request: Request):
    root: Optional[Path] = request.app.state.static_root
    if root is None:
        raise HTTPException(status_code=404, detail="Not found")

    target = _resolve(root, full_path)
    if target is not None:
        return FileResponse(target)

    # SPA fallback
    index = root / "index.html"
    if index.is_file():
        return FileResponse(index)
    raise HTTPException(status_code=404, detail="Not found")
