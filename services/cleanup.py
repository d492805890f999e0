# services/cleanup.py
from typing import Iterable, List, Optional
import logging

from models.lifecycle import CleanupReport
from .object_store import ObjectStore

logger = logging.getLogger(__name__)


def _key(obj: Optional[dict], field: str = "key") -> List[str]:
    if obj and obj.get(field):
        return [obj[field]]
    return []


def dedupe(keys: Iterable[str]) -> List[str]:
    seen = []
    for key in keys:
        if key and key not in seen:
            seen.append(key)
    return seen


def content_item_keys(item: dict) -> List[str]:
    return _key(item, "fileKey") + _key(item.get("thumbnail"))


def article_keys(article: dict) -> List[str]:
    return _key(article.get("image"))


def module_keys(module: dict) -> List[str]:
    keys = []
    for item in module.get("contents", []):
        keys += content_item_keys(item)
    return keys


def syllabus_keys(syllabus: dict) -> List[str]:
    keys = []
    for module in syllabus.get("modules", []):
        keys += module_keys(module)
    return keys


def lecture_keys(lecture: dict) -> List[str]:
    return _key(lecture, "videoKey")


def assignment_keys(assignment: dict) -> List[str]:
    keys = []
    for attachment in assignment.get("attachments", []):
        keys += _key(attachment)
    for submission in assignment.get("submissions", []):
        keys += _key(submission, "submissionFileKey")
    return keys


def announcement_keys(announcement: dict) -> List[str]:
    return _key(announcement.get("image"))


def _comment_keys(comment: dict) -> List[str]:
    keys = []
    for attachment in comment.get("attachments", []):
        keys += _key(attachment, "fileKey")
    for reply in comment.get("replies", []):
        keys += _comment_keys(reply)
    return keys


def discussion_keys(discussion: dict) -> List[str]:
    keys = []
    for attachment in discussion.get("attachments", []):
        keys += _key(attachment, "fileKey")
    for comment in discussion.get("comments", []):
        keys += _comment_keys(comment)
    return keys


def supplementary_keys(content: dict) -> List[str]:
    keys = []
    for module in content.get("modules", []):
        for f in module.get("files", []):
            keys += _key(f, "fileKey")
    return keys


async def purge(store: ObjectStore, keys: List[str]) -> CleanupReport:
    report = CleanupReport(attempted=len(keys))
    for key in keys:
        try:
            await store.delete(key)
            report.deleted.append(key)
        except Exception as e:
            logger.error(f"Error deleting blob {key}: {e}")
            report.failed.append(key)
    logger.info(f"Blob cleanup finished: {len(report.deleted)} deleted, {len(report.failed)} failed")
    return report
