# routes/courses.py
from fastapi import APIRouter, BackgroundTasks, Depends
import logging

from database import get_db
from models.course import CourseCreate, CourseUpdate
from services import cleanup, course_lifecycle
from services.object_store import get_object_store
from .auth import require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/courses", tags=["courses"])


@router.post("/", status_code=201)
async def create_course(course: CourseCreate, db=Depends(get_db),
                        current_user: dict = Depends(require_role("teacher"))):
    logger.info(f"Teacher {current_user['id']} creating course {course.courseCode}")
    result = await course_lifecycle.create_course(db, course, current_user)
    return {"message": "Course created successfully", **result.model_dump(exclude={"manifest"})}


@router.put("/{course_id}")
async def update_course(course_id: str, patch: CourseUpdate, db=Depends(get_db),
                        current_user: dict = Depends(require_role("teacher"))):
    result = await course_lifecycle.update_course(db, course_id, patch, current_user)
    return {"message": "Course updated successfully", **result.model_dump(exclude={"manifest"})}


@router.delete("/{course_id}")
async def delete_course(course_id: str, background_tasks: BackgroundTasks, db=Depends(get_db),
                        store=Depends(get_object_store),
                        current_user: dict = Depends(require_role("teacher"))):
    result = await course_lifecycle.delete_course(db, course_id, current_user)
    background_tasks.add_task(cleanup.purge, store, result.manifest.blobKeys)
    return {"message": "Course deleted successfully", **result.manifest.model_dump()}
