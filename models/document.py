from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional


class DocumentStatus(str, Enum):
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class JobType(str, Enum):
    OCR = "ocr"
    TEXT_EXTRACTION = "text_extraction"
    TRANSCRIPTION = "transcription"
    THUMBNAIL = "thumbnail"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Job types whose result carries text usable as parsed_text
TEXT_JOB_TYPES = (JobType.OCR, JobType.TEXT_EXTRACTION, JobType.TRANSCRIPTION)


class Document(BaseModel):
    id: str
    user_id: str
    filename: str
    original_filename: str
    file_type: str
    file_size: int = 0
    storage_path: str
    status: DocumentStatus
    upload_progress: int = 0
    parsed_text: Optional[str] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    key_points: Optional[List[str]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def has_text(self) -> bool:
        return bool(self.parsed_text and self.parsed_text.strip())

    def has_summary(self) -> bool:
        return bool(self.title and self.summary and self.key_points)

    @property
    def display_title(self) -> str:
        return self.title or self.original_filename


class ProcessingJob(BaseModel):
    id: str
    document_id: str
    job_type: JobType
    status: JobStatus
    progress: int = 0
    result: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Tag(BaseModel):
    id: str
    user_id: str
    name: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DocumentWithTags(Document):
    tags: List[Tag] = Field(default_factory=list)


class SummaryResult(BaseModel):
    title: str
    summary: str
    keyPoints: List[str]
    cached: bool = False


MAX_CHAT_MESSAGE_LENGTH = 1000


class ChatRequest(BaseModel):
    message: str

    @field_validator("message")
    @classmethod
    def _check_message(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message is required and must be a non-empty string")
        if len(value) > MAX_CHAT_MESSAGE_LENGTH:
            raise ValueError(f"Message too long. Please keep messages under {MAX_CHAT_MESSAGE_LENGTH} characters.")
        return value


class ProcessRequest(BaseModel):
    documentId: str = Field(..., min_length=1)
    jobType: JobType


class FixParsedTextRequest(BaseModel):
    documentId: Optional[str] = None


class CreateDocumentRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    original_filename: str = Field(..., min_length=1)
    file_type: str = Field(..., min_length=1)
    file_size: int = Field(..., ge=0)
    storage_path: Optional[str] = None


class ProgressRequest(BaseModel):
    progress: int = Field(..., ge=0, le=100)
    status: Optional[DocumentStatus] = None


class AssignTagsRequest(BaseModel):
    tagIds: List[str] = Field(default_factory=list)


class TagCreate(BaseModel):
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=64)
