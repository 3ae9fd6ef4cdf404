"""
Shared schema base and error/health response models.

The web form speaks camelCase JSON; models are declared in snake_case and
serialized by alias (FastAPI's response_model default).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorResponse(BaseModel):
    """
    Error body shared by every endpoint.

    Example:
        {"success": false, "error": "Заполните поля ...", "code": "validation_error",
         "request_id": "a1b2c3d4"}
    """
    success: bool = Field(default=False)
    error: str = Field(description="Human-readable error description")
    code: str = Field(description="Machine-readable error code")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="healthy, degraded or unhealthy")
    version: str
    database: str
    gemini: str
    google: str
    uptime_seconds: float
