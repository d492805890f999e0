# routes/syllabus.py
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile
from pydantic import TypeAdapter, ValidationError
from typing import Optional
import logging

from database import get_db
from models.storage import Upload
from models.syllabus import (
    ArticleCreate, ArticleUpdate, ChapterCreate, ContentItemCreate, ContentItemUpdate, ModuleCreate,
    ModuleUpdate, ReorderRequest,
)
from services import cleanup, syllabus
from services.errors import InvalidContentItem
from services.object_store import get_object_store
from .auth import require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/courses/{course_id}/syllabus", tags=["syllabus"])

teacher_only = require_role("teacher", "admin")
content_payload = TypeAdapter(ContentItemCreate)


async def to_upload(file: Optional[UploadFile]) -> Optional[Upload]:
    if file is None or not file.filename:
        return None
    data = await file.read()
    return Upload(filename=file.filename, content_type=file.content_type or "application/octet-stream", data=data)


@router.post("/modules", status_code=201)
async def add_module(course_id: str, module: ModuleCreate, db=Depends(get_db),
                     current_user: dict = Depends(teacher_only)):
    created = await syllabus.add_module(db, current_user, course_id, module)
    return {"message": "Module added successfully", "module": created}


@router.put("/modules/{module_id}")
async def update_module(course_id: str, module_id: str, module: ModuleUpdate, db=Depends(get_db),
                        current_user: dict = Depends(teacher_only)):
    updated = await syllabus.update_module(db, current_user, course_id, module_id, module)
    return {"message": "Module updated successfully", "module": updated}


@router.delete("/modules/{module_id}")
async def remove_module(course_id: str, module_id: str, background_tasks: BackgroundTasks,
                        db=Depends(get_db), store=Depends(get_object_store),
                        current_user: dict = Depends(teacher_only)):
    manifest = await syllabus.remove_module(db, current_user, course_id, module_id)
    background_tasks.add_task(cleanup.purge, store, manifest.blobKeys)
    return {"message": "Module deleted successfully", **manifest.model_dump()}


@router.post("/modules/{module_id}/chapters", status_code=201)
async def add_chapter(course_id: str, module_id: str, chapter: ChapterCreate, db=Depends(get_db),
                      current_user: dict = Depends(teacher_only)):
    created = await syllabus.add_chapter(db, current_user, course_id, module_id, chapter)
    return {"message": "Chapter added successfully", "chapter": created}


@router.delete("/modules/{module_id}/chapters/{chapter_id}")
async def remove_chapter(course_id: str, module_id: str, chapter_id: str, background_tasks: BackgroundTasks,
                         db=Depends(get_db), store=Depends(get_object_store),
                         current_user: dict = Depends(teacher_only)):
    manifest = await syllabus.remove_chapter(db, current_user, course_id, module_id, chapter_id)
    background_tasks.add_task(cleanup.purge, store, manifest.blobKeys)
    return {"message": "Chapter deleted successfully", **manifest.model_dump()}


@router.post("/modules/{module_id}/chapters/{chapter_id}/articles", status_code=201)
async def add_article(
    course_id: str,
    module_id: str,
    chapter_id: str,
    title: str = Form(...),
    content: str = Form(...),
    author: str = Form(""),
    image: Optional[UploadFile] = File(None),
    db=Depends(get_db),
    store=Depends(get_object_store),
    current_user: dict = Depends(teacher_only),
):
    try:
        data = ArticleCreate(title=title, content=content, author=author)
    except ValidationError as e:
        raise InvalidContentItem(e.errors()[0]["msg"])
    article = await syllabus.add_article(db, store, current_user, course_id, module_id, chapter_id,
                                         data, await to_upload(image))
    return {"message": "Article created successfully", "article": article}


@router.put("/articles/{article_id}")
async def update_article(
    course_id: str,
    article_id: str,
    background_tasks: BackgroundTasks,
    title: Optional[str] = Form(None),
    content: Optional[str] = Form(None),
    author: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    db=Depends(get_db),
    store=Depends(get_object_store),
    current_user: dict = Depends(teacher_only),
):
    try:
        changes = ArticleUpdate(title=title, content=content, author=author)
    except ValidationError as e:
        raise InvalidContentItem(e.errors()[0]["msg"])
    article, manifest = await syllabus.update_article(db, store, current_user, course_id, article_id,
                                                      changes, await to_upload(image))
    background_tasks.add_task(cleanup.purge, store, manifest.blobKeys)
    return {"message": "Article updated successfully", "article": article}


@router.delete("/articles/{article_id}")
async def remove_article(course_id: str, article_id: str, background_tasks: BackgroundTasks,
                         db=Depends(get_db), store=Depends(get_object_store),
                         current_user: dict = Depends(teacher_only)):
    manifest = await syllabus.remove_article(db, current_user, course_id, article_id)
    background_tasks.add_task(cleanup.purge, store, manifest.blobKeys)
    return {"message": "Article deleted successfully", **manifest.model_dump()}


@router.post("/modules/{module_id}/contents", status_code=201)
async def add_content_item(
    course_id: str,
    module_id: str,
    type: str = Form(...),
    name: str = Form("Untitled Content"),
    description: str = Form(""),
    url: Optional[str] = Form(None),
    linkType: Optional[str] = Form(None),
    body: Optional[str] = Form(None),
    duration: Optional[str] = Form(None),
    videoQuality: Optional[str] = Form(None),
    pageCount: Optional[int] = Form(None),
    file: Optional[UploadFile] = File(None),
    thumbnail: Optional[UploadFile] = File(None),
    db=Depends(get_db),
    store=Depends(get_object_store),
    current_user: dict = Depends(teacher_only),
):
    fields = {
        "type": type, "name": name, "description": description, "url": url, "linkType": linkType,
        "body": body, "duration": duration, "videoQuality": videoQuality, "pageCount": pageCount,
    }
    try:
        payload = content_payload.validate_python({k: v for k, v in fields.items() if v is not None})
    except ValidationError as e:
        raise InvalidContentItem(f"Invalid {type} content: {e.errors()[0]['msg']}")
    item = await syllabus.add_content_item(db, store, current_user, course_id, module_id, payload,
                                           await to_upload(file), await to_upload(thumbnail))
    return {"message": "Content added successfully", "content": item}


@router.put("/modules/{module_id}/contents/{item_id}")
async def update_content_item(course_id: str, module_id: str, item_id: str, changes: ContentItemUpdate,
                              db=Depends(get_db), current_user: dict = Depends(teacher_only)):
    item = await syllabus.update_content_item(db, current_user, course_id, module_id, item_id, changes)
    return {"message": "Content updated successfully", "content": item}


@router.put("/modules/{module_id}/contents/{item_id}/asset")
async def replace_content_asset(
    course_id: str,
    module_id: str,
    item_id: str,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    thumbnail: Optional[UploadFile] = File(None),
    db=Depends(get_db),
    store=Depends(get_object_store),
    current_user: dict = Depends(teacher_only),
):
    item, manifest = await syllabus.replace_content_item_asset(
        db, store, current_user, course_id, module_id, item_id,
        await to_upload(file), await to_upload(thumbnail),
    )
    background_tasks.add_task(cleanup.purge, store, manifest.blobKeys)
    return {"message": "Content file replaced successfully", "content": item}


@router.delete("/modules/{module_id}/contents/{item_id}")
async def remove_content_item(course_id: str, module_id: str, item_id: str, background_tasks: BackgroundTasks,
                              db=Depends(get_db), store=Depends(get_object_store),
                              current_user: dict = Depends(teacher_only)):
    manifest = await syllabus.remove_content_item(db, current_user, course_id, module_id, item_id)
    background_tasks.add_task(cleanup.purge, store, manifest.blobKeys)
    return {"message": "Content deleted successfully", **manifest.model_dump()}


@router.put("/reorder")
async def reorder(course_id: str, request: ReorderRequest, db=Depends(get_db),
                  current_user: dict = Depends(teacher_only)):
    items = await syllabus.reorder(db, current_user, course_id, request.moduleId, request.target, request.orders)
    return {"message": "Order updated successfully", request.target: items}
