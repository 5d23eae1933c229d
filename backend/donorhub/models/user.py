from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field


StaffRole = Literal["admin", "staff"]


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str
    role: StaffRole = Field(default="staff")


class UserPublic(BaseModel):
    id: str = Field(alias="_id")
    email: EmailStr
    name: str
    role: StaffRole
    created_at: datetime


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AuthResponse(Token):
    user: UserPublic
    message: str = "Authenticated"
