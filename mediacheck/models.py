from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

FileType = Literal["image", "video", "audio"]


class Dimensions(BaseModel):
    width: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)


class FileMetadata(BaseModel):
    name: str
    size: int = Field(default=0, ge=0)
    type: str
    upload_time: datetime = Field(default_factory=lambda: datetime.now(UTC))
    duration: float | None = Field(default=None, ge=0)
    dimensions: Dimensions | None = None


class UploadedFile(BaseModel):
    id: str
    path: str
    type: FileType
    metadata: FileMetadata


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_ai_generated: bool
    confidence_score: int = Field(ge=0, le=100)
    detection_method: str
    processing_time: int = Field(default=0, ge=0)
    file_info: FileMetadata
    detected_features: list[str] = Field(default_factory=list)
    explanation: str = ""


class AnalyzeRequest(BaseModel):
    file_path: str
    file_type: FileType
    metadata: FileMetadata


class AnalyzeByIdRequest(BaseModel):
    file_type: FileType
    metadata: FileMetadata


class AnalyzeResponse(BaseModel):
    success: bool
    result: AnalysisResult | None = None
    error: str | None = None


class UnblockIpRequest(BaseModel):
    ip: str = Field(min_length=1)


class CleanupConfigRequest(BaseModel):
    max_age: int | None = None
    max_files: int | None = None
    check_interval: int | None = None


class ErrorCleanupRequest(BaseModel):
    days_to_keep: int = Field(default=30, ge=1)


class ResetMetricsRequest(BaseModel):
    api_name: str | None = None
