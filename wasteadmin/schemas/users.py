from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, EmailStr, Field

from .common import UserRole


class UserResponse(BaseModel):
    id: str
    email: str
    full_name: str
    phone: Optional[str] = None
    role: str
    is_active: bool
    permissions: Dict[str, bool] = {}
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: str = Field(min_length=1)
    phone: Optional[str] = None
    role: UserRole = UserRole.driver


class UserStatusUpdate(BaseModel):
    is_active: bool


class UserRoleUpdate(BaseModel):
    # Plain string: out-of-set values are reported as invalid_status, not 422
    role: str


class ApprovalRequestResponse(BaseModel):
    id: str
    email: str
    full_name: str
    phone: Optional[str] = None
    role: str
    status: str
    created_at: datetime
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    user_id: Optional[str] = None

    class Config:
        from_attributes = True


class ApprovalDecision(BaseModel):
    approved: bool
