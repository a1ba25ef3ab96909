from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UserPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | int | None = None
    username: str | None = None
    name: str | None = None
    role: str | None = None


class LoginResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str = Field(min_length=1)
    user: UserPayload = Field(default_factory=UserPayload)


class EmployeePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | int
    name: str
    # Malformed descriptors are dropped later by EnrolledIdentity.
    descriptors: list[Any] | None = None

    @field_validator("descriptors", mode="before")
    @classmethod
    def _descriptors_as_list(cls, value: Any) -> list[Any] | None:
        if value is None or isinstance(value, list):
            return value
        return None


class EmployeesResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    employees: list[EmployeePayload] = Field(default_factory=list)


class ConfirmationResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user: UserPayload = Field(default_factory=UserPayload)
    date: str
    time: str
