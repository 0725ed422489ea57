"""Pydantic request/response schemas for the extraction service API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator

# -- Extract ------------------------------------------------------------------


class ExtractRequest(BaseModel):
    file_base64: str | None = Field(None, description="Base64-encoded file content")
    file_path: str | None = Field(
        None, max_length=4096, description="Path under the configured local file root"
    )
    file_type: str = Field(
        ..., min_length=1, max_length=200, description="MIME type (e.g., 'application/pdf')"
    )
    file_name: str = Field("document", min_length=1, max_length=500)
    language: str | None = Field(
        None, max_length=100, description="Tesseract language code(s), e.g. 'eng' or 'eng+fra'"
    )

    @model_validator(mode="after")
    def _one_source(self) -> ExtractRequest:
        if bool(self.file_base64) == bool(self.file_path):
            raise ValueError("Provide exactly one of file_base64 or file_path")
        return self


class MaterialExtractRequest(BaseModel):
    language: str | None = Field(None, max_length=100)
    persist: bool = Field(True, description="Write extracted text back to the material store")


class ExtractResponse(BaseModel):
    success: bool = True
    extracted_text: str
    confidence: float
    method: str
    page_count: int
    processing_time_ms: int
    metadata: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    error_kind: str
    attempted: list[str] | None = None


# -- Health -------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    error: str | None = None
