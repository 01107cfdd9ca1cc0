from fastapi import Request
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

from streamflow_proxy.configs import settings


class DocsAccessControlMiddleware(BaseHTTPMiddleware):
    """Middleware that hides the API documentation when it is disabled in settings."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if settings.disable_docs and (path == "/docs" or path == "/redoc" or path.startswith("/openapi")):
            return PlainTextResponse("Not Found", status_code=404)

        return await call_next(request)
