"""
Request bodies for the HTTP API.

Field aliases follow the camelCase names the dashboard and external modules
send.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from neoloc.auth.models import SYSTEM_ROLES


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PRIMARY_ROLE_PATTERN = "^(" + "|".join(SYSTEM_ROLES) + ")$"


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class LoginRequest(ApiModel):
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1)


class GenerateTokenRequest(ApiModel):
    module_id: str = Field(alias="moduleId", min_length=1)


class ValidateTokenRequest(ApiModel):
    token: str = Field(min_length=1)
    module_id: str = Field(alias="moduleId", min_length=1)


class CreateUserRequest(ApiModel):
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6)
    full_name: str = Field(alias="fullName", min_length=1)
    role: str = Field(default="viewer", pattern=PRIMARY_ROLE_PATTERN)
    module_access: List[str] = Field(alias="moduleAccess", default_factory=list)


class UpdateUserRequest(ApiModel):
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN)
    full_name: Optional[str] = Field(alias="fullName", default=None, min_length=1)
    role: Optional[str] = Field(default=None, pattern=PRIMARY_ROLE_PATTERN)
    is_active: Optional[bool] = Field(alias="isActive", default=None)
    module_access: Optional[List[str]] = Field(alias="moduleAccess", default=None)


class CreateRoleRequest(ApiModel):
    name: str = Field(min_length=1, pattern=r"^[a-z0-9_\-]+$")
    display_name: str = Field(alias="displayName", min_length=1)
    description: str = ""


class AssignPermissionRequest(ApiModel):
    permission_id: str = Field(alias="permissionId", min_length=1)


class AssignRoleRequest(ApiModel):
    role_id: str = Field(alias="roleId", min_length=1)
