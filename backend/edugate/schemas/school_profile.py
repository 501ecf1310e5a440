"""Pydantic schemas for school profile edits and edit-token verification."""

from pydantic import BaseModel, EmailStr, Field


class SchoolLevels(BaseModel):
    primary: bool | None = None
    secondary: bool | None = None
    tertiary: bool | None = None


class SchoolProfileUpdate(BaseModel):
    """Proposed profile change.

    `subdomain` and `is_active` are accepted only so they can be refused
    explicitly; school admins can never change them.
    """
    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=30)
    address: str | None = Field(default=None, max_length=500)
    levels: SchoolLevels | None = None

    subdomain: str | None = None
    is_active: bool | None = None


class SchoolSnapshot(BaseModel):
    id: str
    name: str
    subdomain: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    has_primary: bool
    has_secondary: bool
    has_tertiary: bool
    is_active: bool

    model_config = {"from_attributes": True}


class EditTokenAck(BaseModel):
    acknowledged: bool = True
    message: str


class VerifyEditTokenRequest(BaseModel):
    token: str = Field(min_length=1, max_length=80)


class VerifiedChangeOut(BaseModel):
    proposed_changes: dict
    current_snapshot: SchoolSnapshot   # before the change was applied
    school: SchoolSnapshot             # after


class CleanupResult(BaseModel):
    count: int
