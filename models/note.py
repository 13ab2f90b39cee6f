from pydantic import BaseModel, Field


class NoteCreate(BaseModel):
    user_id: str = Field(..., min_length=1)
    document_id: str = Field(..., min_length=1)
    content: str


class NoteUpdate(BaseModel):
    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    content: str


class NoteDelete(BaseModel):
    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
