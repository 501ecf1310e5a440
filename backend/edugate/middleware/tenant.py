"""Tenant middleware: binds the school context from the JWT on every request.

Flow:
  1. Extract Bearer token from Authorization header
  2. Decode JWT → get `school_id` claim
  3. Set ContextVar so downstream code (services, logging) can read it
  4. After the response, clear the ContextVar

Platform users carry no `school_id`; their target school is resolved per
endpoint by `get_school_context` from the X-Tenant-Id header or subdomain.
Routes that need no school (health, docs) never read the context.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from edugate.auth.jwt import decode_token
from edugate.tenancy import clear_school_context, set_current_school_id

# Routes that never require auth: don't reject expired tokens here
_PUBLIC_PREFIXES = ("/docs", "/openapi.json", "/health")


class TenantMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        auth_header = request.headers.get("authorization", "")
        path = request.url.path

        clear_school_context()

        if auth_header.startswith("Bearer "):
            payload = decode_token(auth_header[7:])

            if not payload:
                # Token present but expired/malformed: answer 401 here so
                # the dashboard redirects to login instead of showing a
                # misleading "school context required".
                if not any(path.startswith(p) for p in _PUBLIC_PREFIXES):
                    return JSONResponse(
                        status_code=401,
                        content={
                            "error": {
                                "code": "HTTP_401",
                                "message": "Token expired or invalid",
                            }
                        },
                        headers={"WWW-Authenticate": "Bearer"},
                    )
            elif payload.get("school_id"):
                set_current_school_id(payload["school_id"])

        try:
            response = await call_next(request)
        finally:
            clear_school_context()

        return response
