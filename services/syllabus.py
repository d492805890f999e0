# services/syllabus.py
from typing import Any, Dict, List, Optional, Tuple
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import TypeAdapter, ValidationError

import config
from models.lifecycle import CleanupManifest
from models.storage import StoredObject, Upload
from models.syllabus import (
    FILE_BACKED_TYPES, ArticleCreate, ArticleUpdate, Chapter, ChapterCreate, ContentItem,
    ContentItemUpdate, FileItem, LinkItem, Module, ModuleCreate, ModuleUpdate, OrderEntry,
    PdfItem, PptItem, TextItem, VideoItem,
)
from . import cleanup
from .errors import (
    ArticleNotFound, ChapterNotFound, ContentItemNotFound, CourseNotFound,
    DuplicateModuleNumber, InvalidContentItem, ModuleNotFound, NotCourseOwner,
    SyllabusNotFound, TeacherNotFound, UploadError, ValidationFailed,
)
from .object_store import ObjectStore, validate_upload
from .repositories import Repositories, new_id, now
from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

content_item_adapter = TypeAdapter(ContentItem)

PPT_TYPES = {
    "application/vnd.ms-powerpoint": "ppt",
    "application/vnd.oasis.opendocument.presentation": "odp",
}


async def _owned_course(repos: Repositories, identity: dict, course_id: str) -> dict:
    role = identity.get("role")
    if role == "admin":
        course = await repos.courses.get(course_id)
    elif role == "teacher":
        teacher = await repos.teachers.get_by_user(identity["id"])
        if not teacher:
            raise TeacherNotFound("Teacher not found")
        course = await repos.courses.find_one({"id": course_id, "teacher": teacher["id"]})
    else:
        raise NotCourseOwner("Only teachers can edit a syllabus")
    if not course:
        raise CourseNotFound("Course not found or unauthorized")
    return course


async def _load(repos: Repositories, identity: dict, course_id: str) -> Tuple[dict, dict]:
    course = await _owned_course(repos, identity, course_id)
    syllabus = await repos.syllabi.get_for_course(course_id)
    if not syllabus:
        raise SyllabusNotFound("Syllabus not found")
    return course, syllabus


def _find(items: List[dict], item_id: str, error, label: str) -> dict:
    for item in items:
        if item["id"] == item_id:
            return item
    raise error(f"{label} not found")


def _module(syllabus: dict, module_id: str) -> dict:
    return _find(syllabus.get("modules", []), module_id, ModuleNotFound, "Module")


def _chapter(module: dict, chapter_id: str) -> dict:
    return _find(module.get("chapters", []), chapter_id, ChapterNotFound, "Chapter")


def _content(module: dict, item_id: str) -> dict:
    return _find(module.get("contents", []), item_id, ContentItemNotFound, "Content item")


def _position(items: List[dict], item_id: str) -> int:
    return next(index for index, item in enumerate(items) if item["id"] == item_id)


async def _upload(store: ObjectStore, uow: UnitOfWork, upload: Upload, kind: str, path: str) -> StoredObject:
    """Validate and store one file; the blob is removed again if the unit of work fails."""
    validate_upload(upload, kind)
    try:
        stored = await store.upload(upload, path)
    except UploadError:
        raise
    except Exception as e:
        logger.error(f"Upload of {upload.filename} failed: {e}")
        raise UploadError(f"Failed to upload {upload.filename}: {e}") from e

    async def _discard():
        await cleanup.purge(store, [stored.key])

    uow.on_rollback(_discard)
    return stored


# Modules

async def add_module(db: AsyncIOMotorDatabase, identity: dict, course_id: str, data: ModuleCreate) -> dict:
    repos = Repositories(db)
    course = await _owned_course(repos, identity, course_id)
    syllabus = await repos.syllabi.get_for_course(course_id)
    modules = syllabus.get("modules", []) if syllabus else []

    if any(m["moduleNumber"] == data.moduleNumber for m in modules):
        raise DuplicateModuleNumber(f"Module number {data.moduleNumber} already exists")

    timestamp = now()
    module = Module(
        id=new_id(),
        moduleNumber=data.moduleNumber,
        title=data.title,
        description=data.description,
        order=len(modules) + 1,
        createdAt=timestamp,
        updatedAt=timestamp,
    ).model_dump()

    async with UnitOfWork(db) as uow:
        if syllabus:
            repos.syllabi.push_module(uow, syllabus["id"], module)
        else:
            syllabus = repos.syllabi.create(uow, {"course": course_id, "modules": [module]})
            repos.courses.update(uow, course["id"], {"syllabus": syllabus["id"]})
    logger.info(f"Module {module['id']} added to course {course_id}")
    return module


async def update_module(db: AsyncIOMotorDatabase, identity: dict, course_id: str, module_id: str,
                        data: ModuleUpdate) -> dict:
    repos = Repositories(db)
    _, syllabus = await _load(repos, identity, course_id)
    module = _module(syllabus, module_id)

    fields = data.model_dump(exclude_none=True)
    if "title" in fields:
        fields["title"] = fields["title"].strip()
        if not fields["title"]:
            raise ValidationFailed("Module title cannot be blank")
    number = fields.get("moduleNumber")
    if number is not None and any(
        m["moduleNumber"] == number and m["id"] != module_id for m in syllabus["modules"]
    ):
        raise DuplicateModuleNumber(f"Module number {number} already exists")

    fields["updatedAt"] = now()
    async with UnitOfWork(db) as uow:
        repos.syllabi.set_module_fields(uow, syllabus["id"], module_id, fields)
    return {**module, **fields}


def _module_manifest(module: dict, articles: List[dict]) -> CleanupManifest:
    keys = cleanup.module_keys(module)
    for article in articles:
        keys += cleanup.article_keys(article)
    return CleanupManifest(
        deletedCounts={
            "modules": 1,
            "chapters": len(module.get("chapters", [])),
            "articles": len(articles),
            "contentItems": len(module.get("contents", [])),
        },
        blobKeys=cleanup.dedupe(keys),
    )


async def remove_module(db: AsyncIOMotorDatabase, identity: dict, course_id: str, module_id: str) -> CleanupManifest:
    repos = Repositories(db)
    _, syllabus = await _load(repos, identity, course_id)
    module = _module(syllabus, module_id)
    article_ids = [a for chapter in module.get("chapters", []) for a in chapter.get("articles", [])]
    articles = await repos.articles.find({"id": {"$in": article_ids}}) if article_ids else []

    manifest = _module_manifest(module, articles)
    async with UnitOfWork(db) as uow:
        repos.syllabi.pull_module(uow, syllabus["id"], module_id)
        repos.articles.delete_ids(uow, [a["id"] for a in articles])
    logger.info(f"Module {module_id} removed from course {course_id}: {manifest.deletedCounts}")
    return manifest


# Chapters and articles

async def add_chapter(db: AsyncIOMotorDatabase, identity: dict, course_id: str, module_id: str,
                      data: ChapterCreate) -> dict:
    repos = Repositories(db)
    _, syllabus = await _load(repos, identity, course_id)
    module = _module(syllabus, module_id)

    order = max((c.get("order", 0) for c in module.get("chapters", [])), default=0) + 1
    chapter = Chapter(
        id=new_id(),
        title=data.title,
        description=data.description,
        links=data.links,
        order=order,
        createdAt=now(),
    ).model_dump()

    async with UnitOfWork(db) as uow:
        repos.syllabi.push_into_module(uow, syllabus["id"], module_id, "chapters", chapter)
    logger.info(f"Chapter {chapter['id']} added to module {module_id}")
    return chapter


async def remove_chapter(db: AsyncIOMotorDatabase, identity: dict, course_id: str, module_id: str,
                         chapter_id: str) -> CleanupManifest:
    repos = Repositories(db)
    _, syllabus = await _load(repos, identity, course_id)
    chapter = _chapter(_module(syllabus, module_id), chapter_id)
    article_ids = chapter.get("articles", [])
    articles = await repos.articles.find({"id": {"$in": article_ids}}) if article_ids else []

    keys = []
    for article in articles:
        keys += cleanup.article_keys(article)
    manifest = CleanupManifest(
        deletedCounts={"chapters": 1, "articles": len(articles)},
        blobKeys=cleanup.dedupe(keys),
    )
    async with UnitOfWork(db) as uow:
        repos.syllabi.pull_from_module(uow, syllabus["id"], module_id, "chapters", chapter_id)
        repos.articles.delete_ids(uow, [a["id"] for a in articles])
    logger.info(f"Chapter {chapter_id} removed from module {module_id}")
    return manifest


async def add_article(db: AsyncIOMotorDatabase, store: ObjectStore, identity: dict, course_id: str,
                      module_id: str, chapter_id: str, data: ArticleCreate,
                      image: Optional[Upload] = None) -> dict:
    repos = Repositories(db)
    _, syllabus = await _load(repos, identity, course_id)
    module = _module(syllabus, module_id)
    chapter = _chapter(module, chapter_id)
    index = _position(module["chapters"], chapter_id)

    article_id = new_id()
    async with UnitOfWork(db) as uow:
        stored = None
        if image is not None:
            stored = await _upload(store, uow, image, "image", config.ARTICLE_IMAGE_PATH)
        repos.syllabi.push_article_ref(uow, syllabus["id"], module_id, index, chapter_id, article_id)
        article = repos.articles.create(uow, {
            "course": course_id,
            "module": module_id,
            "chapter": chapter_id,
            "title": data.title,
            "content": data.content,
            "author": data.author,
            "image": stored.model_dump() if stored else None,
            "order": len(chapter.get("articles", [])) + 1,
        }, id=article_id)
    logger.info(f"Article {article_id} added to chapter {chapter_id}")
    return article


async def _owned_article(repos: Repositories, identity: dict, course_id: str, article_id: str) -> dict:
    await _owned_course(repos, identity, course_id)
    article = await repos.articles.find_one({"id": article_id, "course": course_id})
    if not article:
        raise ArticleNotFound("Article not found")
    return article


async def update_article(db: AsyncIOMotorDatabase, store: ObjectStore, identity: dict, course_id: str,
                         article_id: str, changes: ArticleUpdate,
                         image: Optional[Upload] = None) -> Tuple[dict, CleanupManifest]:
    """Edit an article; a new image replaces the old one, whose key is returned for purging."""
    repos = Repositories(db)
    article = await _owned_article(repos, identity, course_id, article_id)

    fields = changes.model_dump(exclude_none=True)
    old_keys: List[str] = []
    async with UnitOfWork(db) as uow:
        if image is not None:
            stored = await _upload(store, uow, image, "image", config.ARTICLE_IMAGE_PATH)
            fields["image"] = stored.model_dump()
            old_keys = cleanup.article_keys(article)
        if fields:
            repos.articles.update(uow, article_id, fields)

    logger.info(f"Article {article_id} updated: {sorted(fields)}")
    updated = await repos.articles.get(article_id)
    return updated, CleanupManifest(deletedCounts={}, blobKeys=old_keys)


async def remove_article(db: AsyncIOMotorDatabase, identity: dict, course_id: str, article_id: str) -> CleanupManifest:
    repos = Repositories(db)
    article = await _owned_article(repos, identity, course_id, article_id)
    syllabus = await repos.syllabi.get_for_course(course_id)

    async with UnitOfWork(db) as uow:
        module = next((m for m in (syllabus or {}).get("modules", []) if m["id"] == article.get("module")), None)
        for index, chapter in enumerate((module or {}).get("chapters", [])):
            if article_id in chapter.get("articles", []):
                repos.syllabi.pull_article_ref(uow, syllabus["id"], module["id"], index, chapter["id"], article_id)
        repos.articles.delete(uow, article_id)
    return CleanupManifest(deletedCounts={"articles": 1}, blobKeys=cleanup.article_keys(article))


# Content items

def build_content_item(payload, order: int, asset: Optional[StoredObject] = None,
                       upload: Optional[Upload] = None, thumbnail: Optional[StoredObject] = None) -> dict:
    base: Dict[str, Any] = {
        "id": new_id(),
        "name": payload.name.strip() or "Untitled Content",
        "description": payload.description,
        "order": order,
        "thumbnail": thumbnail,
        "createdAt": now(),
    }
    try:
        if payload.type == "file":
            item = FileItem(**base, fileUrl=asset.url, fileKey=asset.key,
                            fileName=upload.filename, fileSize=upload.size)
        elif payload.type == "pdf":
            item = PdfItem(**base, fileUrl=asset.url, fileKey=asset.key, fileName=upload.filename,
                           fileSize=upload.size, pageCount=payload.pageCount)
        elif payload.type == "ppt":
            item = PptItem(**base, fileUrl=asset.url, fileKey=asset.key, fileName=upload.filename,
                           fileSize=upload.size, presentationType=PPT_TYPES.get(upload.content_type, "pptx"))
        elif payload.type == "video":
            item = VideoItem(**base, videoUrl=asset.url, fileKey=asset.key, fileName=upload.filename,
                             videoSize=upload.size, duration=payload.duration,
                             videoQuality=payload.videoQuality)
        elif payload.type == "link":
            item = LinkItem(**base, url=payload.url.strip(), linkType=payload.linkType)
        elif payload.type == "text":
            item = TextItem(**base, body=payload.body)
        else:
            raise InvalidContentItem(f"Unsupported content type: {payload.type}")
    except ValidationError as e:
        raise InvalidContentItem(f"Invalid {payload.type} content: {e.errors()[0]['msg']}") from e
    return item.model_dump()


async def add_content_item(db: AsyncIOMotorDatabase, store: ObjectStore, identity: dict, course_id: str,
                           module_id: str, payload, upload: Optional[Upload] = None,
                           thumbnail: Optional[Upload] = None) -> dict:
    repos = Repositories(db)
    _, syllabus = await _load(repos, identity, course_id)
    module = _module(syllabus, module_id)

    kind = payload.type
    if kind in FILE_BACKED_TYPES and upload is None:
        raise UploadError(f"No {kind} file uploaded")

    async with UnitOfWork(db) as uow:
        asset = None
        if kind in FILE_BACKED_TYPES:
            asset = await _upload(store, uow, upload, kind, config.UPLOAD_PATHS[kind])
        thumb = None
        if thumbnail is not None:
            thumb = await _upload(store, uow, thumbnail, "image",
                                  f"syllabus-thumbnails/course-{course_id}/module-{module_id}")
        order = sum(1 for i in module.get("contents", []) if i.get("type") == kind) + 1
        item = build_content_item(payload, order, asset, upload if asset else None, thumb)
        repos.syllabi.push_into_module(uow, syllabus["id"], module_id, "contents", item)
    logger.info(f"{kind} content item {item['id']} added to module {module_id}")
    return item


def _revalidate(item: dict) -> dict:
    try:
        return content_item_adapter.validate_python(item).model_dump()
    except ValidationError as e:
        raise InvalidContentItem(f"Invalid {item.get('type')} content: {e.errors()[0]['msg']}") from e


async def update_content_item(db: AsyncIOMotorDatabase, identity: dict, course_id: str, module_id: str,
                              item_id: str, changes: ContentItemUpdate) -> dict:
    repos = Repositories(db)
    _, syllabus = await _load(repos, identity, course_id)
    module = _module(syllabus, module_id)
    item = _content(module, item_id)

    fields = changes.model_dump(exclude_none=True)
    common = {"name", "description", "isActive"}
    variant = {
        "pdf": {"pageCount"},
        "video": {"duration", "videoQuality"},
        "link": {"url", "linkType"},
        "text": {"body"},
    }.get(item["type"], set())
    foreign = set(fields) - common - variant
    if foreign:
        raise InvalidContentItem(f"Fields {sorted(foreign)} do not apply to {item['type']} content")

    updated = _revalidate({**item, **fields, "updatedAt": now()})
    index = _position(module["contents"], item_id)
    async with UnitOfWork(db) as uow:
        repos.syllabi.replace_in_module(uow, syllabus["id"], module_id, "contents", index, updated)
    return updated


async def replace_content_item_asset(db: AsyncIOMotorDatabase, store: ObjectStore, identity: dict,
                                     course_id: str, module_id: str, item_id: str, upload: Upload,
                                     thumbnail: Optional[Upload] = None) -> Tuple[dict, CleanupManifest]:
    repos = Repositories(db)
    _, syllabus = await _load(repos, identity, course_id)
    module = _module(syllabus, module_id)
    item = _content(module, item_id)
    kind = item["type"]
    if kind not in FILE_BACKED_TYPES:
        raise InvalidContentItem(f"{kind} content has no file to replace")
    if upload is None:
        raise UploadError(f"No {kind} file uploaded")

    old_keys = [item["fileKey"]]
    async with UnitOfWork(db) as uow:
        asset = await _upload(store, uow, upload, kind, config.UPLOAD_PATHS[kind])
        changes: Dict[str, Any] = {"fileKey": asset.key, "fileName": upload.filename, "updatedAt": now()}
        if kind == "video":
            changes.update(videoUrl=asset.url, videoSize=upload.size)
        else:
            changes.update(fileUrl=asset.url, fileSize=upload.size)
            if kind == "ppt":
                changes["presentationType"] = PPT_TYPES.get(upload.content_type, "pptx")
        if thumbnail is not None:
            thumb = await _upload(store, uow, thumbnail, "image",
                                  f"syllabus-thumbnails/course-{course_id}/module-{module_id}")
            changes["thumbnail"] = thumb.model_dump()
            if item.get("thumbnail"):
                old_keys.append(item["thumbnail"]["key"])
        updated = _revalidate({**item, **changes})
        repos.syllabi.replace_in_module(uow, syllabus["id"], module_id, "contents",
                                        _position(module["contents"], item_id), updated)

    logger.info(f"Asset of content item {item_id} replaced")
    return updated, CleanupManifest(deletedCounts={}, blobKeys=cleanup.dedupe(old_keys))


async def remove_content_item(db: AsyncIOMotorDatabase, identity: dict, course_id: str, module_id: str,
                              item_id: str) -> CleanupManifest:
    repos = Repositories(db)
    _, syllabus = await _load(repos, identity, course_id)
    item = _content(_module(syllabus, module_id), item_id)

    async with UnitOfWork(db) as uow:
        repos.syllabi.pull_from_module(uow, syllabus["id"], module_id, "contents", item_id)
    return CleanupManifest(deletedCounts={"contentItems": 1}, blobKeys=cleanup.content_item_keys(item))


# Ordering

async def reorder(db: AsyncIOMotorDatabase, identity: dict, course_id: str, module_id: Optional[str],
                  target: str, orders: List[OrderEntry]) -> List[dict]:
    """Overwrite order values as given. Last writer wins; duplicates are not checked."""
    repos = Repositories(db)
    _, syllabus = await _load(repos, identity, course_id)
    wanted = {entry.id: entry.order for entry in orders if entry.order > 0}

    if target == "modules":
        items = syllabus.get("modules", [])
    elif target in ("chapters", "contents"):
        if not module_id:
            raise ValidationFailed("moduleId is required to reorder chapters or contents")
        items = _module(syllabus, module_id).get(target, [])
    else:
        raise ValidationFailed(f"Unknown reorder target: {target}")

    async with UnitOfWork(db) as uow:
        for index, item in enumerate(items):
            if item["id"] not in wanted:
                continue
            order = wanted[item["id"]]
            if target == "modules":
                repos.syllabi.set_module_fields(uow, syllabus["id"], item["id"], {"order": order})
            elif target == "chapters":
                # a chapter carries article refs; only replace it if they are unchanged
                repos.syllabi.replace_in_module(uow, syllabus["id"], module_id, target, index,
                                                {**item, "order": order}, articles=item.get("articles", []))
            else:
                repos.syllabi.replace_in_module(uow, syllabus["id"], module_id, target, index,
                                                {**item, "order": order})

    items = [{**item, "order": wanted[item["id"]]} if item["id"] in wanted else item for item in items]
    return sorted(items, key=lambda i: i.get("order", 0))
