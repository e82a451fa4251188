from __future__ import annotations

import uuid

from pydantic import BaseModel, EmailStr, Field, ConfigDict, field_validator


class RegisterIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    username: str = Field(min_length=1, max_length=30, pattern=r"^[a-zA-Z0-9_.-]+$")
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    id: uuid.UUID
    name: str
    username: str
    email: EmailStr
    is_subscription_required: bool

    model_config = ConfigDict(from_attributes=True)
