"""Upload records — a stored bundle to explode into artifact records."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, Field

from appshelf.models.conditions import Condition
from appshelf.models.meta import LocalObjectReference, Phase, Record


class UploadSpec(BaseModel):
    bucket: LocalObjectReference
    key: str  # gzip-compressed tar bundle


class UploadStatus(BaseModel):
    phase: Phase = Phase.PENDING
    conditions: list[Condition] = Field(default_factory=list)
    artifacts: list[str] = Field(default_factory=list)


class Upload(Record):
    kind: ClassVar[str] = "Upload"

    spec: UploadSpec
    status: UploadStatus = Field(default_factory=UploadStatus)
