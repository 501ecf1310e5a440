"""Pydantic schemas for the permission catalog and admin grants."""

from pydantic import BaseModel, Field

from edugate.auth.permissions import PermissionResource, PermissionType


class PermissionOut(BaseModel):
    id: str
    resource: PermissionResource
    type: PermissionType
    description: str | None = None

    model_config = {"from_attributes": True}


class AdminPermissionsOut(BaseModel):
    admin_id: str
    admin_name: str
    role: str
    is_principal: bool
    permissions: list[PermissionOut]


class AssignPermissionsRequest(BaseModel):
    """Full replacement set: anything not listed is revoked."""
    permission_ids: list[str] = Field(default_factory=list, max_length=500)


class MyAccessOut(BaseModel):
    """Bootstrap payload: who am I, which school, what can I do."""
    user_id: str
    role: str
    school_id: str
    admin_id: str | None = None
    admin_role: str | None = None
    is_principal: bool = False
    permissions: list[str]   # "RESOURCE:TYPE"


class MigrationResult(BaseModel):
    migrated: int
    skipped: int
