"""Pydantic v2 schemas for the archive build job."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ArchiveBuildCommand(BaseModel):
    """Validated finalize-job input. Built once at the job boundary."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    gallery_id: str = Field(..., alias="galleryId", min_length=1, max_length=128)
    order_id: str = Field(..., alias="orderId", min_length=1, max_length=128)
    selected_keys: list[str] = Field(..., alias="keys")

    @field_validator("gallery_id", "order_id")
    @classmethod
    def _strip_identifier(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("selected_keys")
    @classmethod
    def _dedupe_keys(cls, value: list[str]) -> list[str]:
        seen: set[str] = set()
        keys: list[str] = []
        for key in value:
            if key not in seen:
                seen.add(key)
                keys.append(key)
        return keys


class JobResponse(BaseModel):
    """HTTP-style envelope returned by the archive job handler."""

    status_code: int
    body: dict
