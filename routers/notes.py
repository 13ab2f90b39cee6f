from fastapi import APIRouter, Depends, Query
from models.note import NoteCreate, NoteDelete, NoteUpdate
from services.backend import get_backend
from utils.errors import NotFound
import logging

router = APIRouter(prefix="/notes", tags=["notes"])
logger = logging.getLogger("api.notes")


@router.get("")
def list_notes(user_id: str = Query(..., min_length=1), backend=Depends(get_backend)):
	return {"notes": backend.list_notes(user_id)}


@router.post("")
def create_note(body: NoteCreate, backend=Depends(get_backend)):
	note = backend.insert_note(body.model_dump())
	logger.info("note_created", extra={"note_id": note.get("id"), "doc_id": body.document_id, "user_id": body.user_id})
	return {"note": note}


@router.patch("")
def update_note(body: NoteUpdate, backend=Depends(get_backend)):
	note = backend.update_note(body.id, body.user_id, body.content)
	if note is None:
		raise NotFound("Note not found")
	logger.info("note_updated", extra={"note_id": body.id, "user_id": body.user_id})
	return {"note": note}


@router.delete("")
def delete_note(body: NoteDelete, backend=Depends(get_backend)):
	backend.delete_note(body.id, body.user_id)
	logger.info("note_deleted", extra={"note_id": body.id, "user_id": body.user_id})
	return {"success": True}
