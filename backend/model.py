# backend/model.py
from pydantic import BaseModel
from typing import Literal

Style = Literal["anime", "cartoon"]

HealthStatus = Literal["ok", "error"]


class AuthRequest(BaseModel):
    pin: str = ""


class AuthResponse(BaseModel):
    success: bool = True


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: HealthStatus
    backend: str
    connection: Literal["connected", "not responding", "not connected"]
