from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from edugate.config import settings
from edugate.middleware.exceptions import register_exception_handlers
from edugate.middleware.tenant import TenantMiddleware
from edugate.routers import health, permissions, school_profile
from edugate.services.scheduler import lifespan

app = FastAPI(
    title="EduGate",
    description="Permission engine and sensitive-change approvals for multi-school administration",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware (outermost first) ─────────────────────────────
# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# School context (innermost - processes request data)
app.add_middleware(TenantMiddleware)

# ── Routers ──────────────────────────────────────────────────
# Public (no school context needed)
app.include_router(health.router)

# School-scoped
app.include_router(permissions.router, prefix="/api/permissions", tags=["permissions"])
app.include_router(school_profile.router, prefix="/api/school-profile", tags=["school-profile"])
