"""
Serves the built frontend bundle (dist/public) from the same app as the API.

Hashed files under /assets are cached for a year, other files for a minute,
and every unknown path falls back to index.html, never cached, so clients
always pick up the latest build.
"""

from pathlib import Path
from typing import Optional

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger
from starlette.requests import Request
from starlette.responses import FileResponse, JSONResponse, Response

from .errors import ConfigurationError

logger = get_logger(__name__)

ASSET_CACHE_CONTROL = "public, max-age=31536000, immutable"
FILE_CACHE_CONTROL = "public, max-age=60"
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _resolve(dist_path: Path, rel_path: str) -> Optional[Path]:
    """File under dist_path for rel_path, or None if missing or outside the bundle."""
    if not rel_path:
        return None
    root = dist_path.resolve()
    candidate = (root / rel_path).resolve()
    if root not in candidate.parents:
        return None
    return candidate if candidate.is_file() else None


def serve_path(dist_path: Path, rel_path: str) -> Response:
    rel_path = rel_path.lstrip("/")
    if rel_path == "api" or rel_path.startswith("api/"):
        return JSONResponse({"error": "Not found"}, status_code=404)

    found = _resolve(dist_path, rel_path)
    if found is not None:
        # FileResponse sets ETag and Last-Modified
        cache_control = ASSET_CACHE_CONTROL if rel_path.startswith("assets/") else FILE_CACHE_CONTROL
        return FileResponse(found, headers={"Cache-Control": cache_control})

    index = dist_path / "index.html"
    if not index.is_file():
        return JSONResponse({"error": "Frontend build not found"}, status_code=404)
    return FileResponse(index, headers=dict(NO_CACHE_HEADERS))


def require_build(dist_path: Path) -> None:
    if not dist_path.is_dir():
        raise ConfigurationError(
            f"Could not find the build directory: {dist_path}, make sure to build the client first"
        )


def register_static_routes(mcp: FastMCP, dist_path: Path) -> None:
    """Adds the catch-all static route; call after every API route is registered."""
    if not dist_path.is_dir():
        logger.warning(f"Build directory {dist_path} not found; only the API will be served")

    @mcp.custom_route("/{path:path}", methods=["GET"], include_in_schema=False)
    async def serve_static(request: Request) -> Response:
        return serve_path(dist_path, request.path_params.get("path", ""))
