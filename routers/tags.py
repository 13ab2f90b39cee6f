from fastapi import APIRouter, Depends, Query
from models.document import TagCreate
from services.backend import get_backend
from services.documents import DocumentManager
import logging

router = APIRouter(prefix="/tags", tags=["tags"])
logger = logging.getLogger("api.tags")


def get_manager(backend=Depends(get_backend)) -> DocumentManager:
	return DocumentManager(backend)


@router.get("")
def list_tags(user_id: str = Query(..., min_length=1), manager: DocumentManager = Depends(get_manager)):
	return {"tags": manager.list_tags(user_id)}


@router.post("")
def create_tag(body: TagCreate, manager: DocumentManager = Depends(get_manager)):
	tag = manager.create_tag(body.user_id, body.name)
	logger.info("tag_created", extra={"tag_id": tag.id, "user_id": body.user_id})
	return {"tag": tag}


@router.delete("/{tag_id}")
def delete_tag(tag_id: str, manager: DocumentManager = Depends(get_manager)):
	manager.delete_tag(tag_id)
	return {"success": True}
