# routes/admin.py
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
import logging

from database import get_db
from models.course import CourseCodeUpdate, CourseCreate, CourseUpdate
from models.student import CourseCodesUpdate, TeacherAssignment
from services import cleanup, course_lifecycle, enrollment
from services.object_store import get_object_store
from .auth import require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

admin_only = require_role("admin")


@router.post("/courses", status_code=201)
async def create_course(course: CourseCreate, db=Depends(get_db), current_user: dict = Depends(admin_only)):
    logger.info(f"Admin creating course {course.courseCode} for {course.teacherEmail}")
    result = await course_lifecycle.create_course(db, course, current_user)
    return {"message": "Course created successfully", **result.model_dump(exclude={"manifest"})}


@router.put("/courses")
async def update_course(patch: CourseUpdate, db=Depends(get_db), current_user: dict = Depends(admin_only)):
    if not patch.courseCode:
        raise HTTPException(status_code=400, detail="courseCode is required")
    result = await course_lifecycle.update_course(db, patch.courseCode, patch, current_user)
    return {"message": "Course updated successfully", **result.model_dump(exclude={"manifest"})}


@router.delete("/courses/{course_code}")
async def delete_course(course_code: str, background_tasks: BackgroundTasks, db=Depends(get_db),
                        store=Depends(get_object_store), current_user: dict = Depends(admin_only)):
    result = await course_lifecycle.delete_course(db, course_code, current_user)
    background_tasks.add_task(cleanup.purge, store, result.manifest.blobKeys)
    return {"message": "Course deleted successfully", **result.manifest.model_dump()}


@router.put("/teachers/{teacher_id}/course-codes")
async def update_teacher_codes(teacher_id: str, body: CourseCodesUpdate, db=Depends(get_db),
                               current_user: dict = Depends(admin_only)):
    teacher = await enrollment.update_teacher_codes(db, teacher_id, body.courseCodes, body.action)
    return {"message": "Teacher course codes updated", "teacher": teacher}


@router.put("/students/{student_id}/course-codes")
async def update_student_codes(student_id: str, body: CourseCodesUpdate, db=Depends(get_db),
                               current_user: dict = Depends(admin_only)):
    student = await enrollment.update_student_codes(db, student_id, body.courseCodes, body.action)
    return {"message": "Student course codes updated", "student": student}


@router.put("/students/{student_id}/teacher")
async def assign_teacher(student_id: str, body: TeacherAssignment, db=Depends(get_db),
                         current_user: dict = Depends(admin_only)):
    student = await enrollment.assign_student_teacher(db, student_id, body.teacherId)
    return {"message": "Student teacher updated", "student": student}


@router.put("/course-codes/{course_code}")
async def update_course_code(course_code: str, body: CourseCodeUpdate, db=Depends(get_db),
                             current_user: dict = Depends(admin_only)):
    result = await enrollment.rename_course_code(db, course_code, body.newCourseCode,
                                                 body.addTeachers, body.removeTeachers)
    return {"message": "Course code updated successfully", **result}


@router.delete("/course-codes/{course_code}")
async def delete_course_code(course_code: str, background_tasks: BackgroundTasks, db=Depends(get_db),
                             store=Depends(get_object_store), current_user: dict = Depends(admin_only)):
    logger.info(f"Admin deleting course code {course_code}")
    manifest = await course_lifecycle.delete_course_code(db, course_code)
    background_tasks.add_task(cleanup.purge, store, manifest.blobKeys)
    return {"message": f"Course code {course_code.strip().upper()} and all related data deleted successfully",
            **manifest.model_dump()}
