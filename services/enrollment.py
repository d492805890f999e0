# services/enrollment.py
from typing import List, Optional, Tuple
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase

from models.course import normalize_code
from .errors import (
    AlreadyEnrolled, CourseCodeInUse, CourseCodeNotAuthorized, CourseNotFound, DuplicateCourseCode,
    StudentNotFound, TeacherMismatch, TeacherNotFound,
)
from .repositories import Repositories
from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


# A student references a course exactly when both share a teacher and the
# student holds the course's code.
def should_reference(course: dict, student: dict) -> bool:
    return (
        course.get("teacher") == student.get("teacher")
        and course.get("courseCode") in (student.get("courseCodes") or [])
    )


async def sync_on_grant(repos: Repositories, uow: UnitOfWork, teacher_id: str,
                        course_code: str, course_id: str) -> List[str]:
    candidates = await repos.students.find({"teacher": teacher_id, "courseCodes": course_code})
    granted = []
    for student in candidates:
        if course_id in student.get("courses", []):
            continue
        repos.students.add_course(uow, student["id"], course_id)
        granted.append(student["id"])
    logger.info(f"Course {course_id} ({course_code}) granted to {len(granted)} students")
    return granted


async def sync_on_revoke(repos: Repositories, uow: UnitOfWork, teacher_id: str,
                         course_code: str, course_id: str) -> List[str]:
    course = {"id": course_id, "teacher": teacher_id, "courseCode": course_code}
    revoked = []
    for student in await repos.students.find_referencing(course_id):
        if should_reference(course, student):
            continue
        repos.students.remove_course(uow, student["id"], course_id)
        revoked.append(student["id"])
    logger.info(f"Course {course_id} ({course_code}) revoked from {len(revoked)} students")
    return revoked


async def reconcile_student(repos: Repositories, uow: UnitOfWork, student: dict) -> Tuple[List[str], List[str]]:
    """Bring one student's course list in line with their teacher and codes.

    ``student`` carries the post-edit teacher and codes; the stored document
    may not have them yet since the edit is still queued.
    """
    current = list(student.get("courses", []))
    granted, revoked = [], []

    if student.get("teacher") and student.get("courseCodes"):
        eligible = await repos.courses.find({
            "teacher": student["teacher"],
            "courseCode": {"$in": student["courseCodes"]},
        })
        for course in eligible:
            if course["id"] not in current:
                repos.students.add_course(uow, student["id"], course["id"])
                granted.append(course["id"])

    if current:
        referenced = {c["id"]: c for c in await repos.courses.find({"id": {"$in": current}})}
        for course_id in current:
            course = referenced.get(course_id)
            # dangling references to deleted courses go too
            if course is None or not should_reference(course, student):
                repos.students.remove_course(uow, student["id"], course_id)
                revoked.append(course_id)

    logger.info(f"Reconciled student {student['id']}: +{len(granted)} -{len(revoked)} courses")
    return granted, revoked


def apply_code_action(current: List[str], codes: List[str], action: str) -> List[str]:
    codes = [normalize_code(c) for c in codes]
    if action == "add":
        return current + [c for c in codes if c not in current]
    if action == "remove":
        return [c for c in current if c not in codes]
    return list(codes)


async def enroll_self(db: AsyncIOMotorDatabase, user_id: str, course_id: str) -> dict:
    repos = Repositories(db)
    student = await repos.students.get_by_user(user_id)
    if not student:
        raise StudentNotFound("Student not found")
    course = await repos.courses.get(course_id)
    if not course:
        raise CourseNotFound("Course not found")

    if course["teacher"] != student.get("teacher"):
        raise TeacherMismatch("You can only enroll in courses taught by your teacher")
    if course["courseCode"] not in student.get("courseCodes", []):
        raise CourseCodeNotAuthorized("You are not authorized to enroll in this course")
    if course_id in student.get("courses", []):
        raise AlreadyEnrolled("Already enrolled in this course")

    async with UnitOfWork(db) as uow:
        repos.students.add_course(uow, student["id"], course_id)
    logger.info(f"Student {student['id']} enrolled in course {course_id}")
    return course


async def update_student_codes(db: AsyncIOMotorDatabase, student_id: str, codes: List[str],
                               action: str = "replace") -> dict:
    repos = Repositories(db)
    student = await repos.students.get(student_id)
    if not student:
        raise StudentNotFound("Student not found")

    new_codes = apply_code_action(student.get("courseCodes", []), codes, action)
    updated = {**student, "courseCodes": new_codes}
    async with UnitOfWork(db) as uow:
        repos.students.update(uow, student_id, {"courseCodes": new_codes})
        await reconcile_student(repos, uow, updated)
    logger.info(f"Student {student_id} course codes ({action}): {new_codes}")
    return await repos.students.get(student_id)


async def update_teacher_codes(db: AsyncIOMotorDatabase, teacher_id: str, codes: List[str],
                               action: str = "replace") -> dict:
    repos = Repositories(db)
    teacher = await repos.teachers.get(teacher_id)
    if not teacher:
        raise TeacherNotFound("Teacher not found")

    current = teacher.get("courseCodes", [])
    new_codes = apply_code_action(current, codes, action)
    for code in current:
        if code in new_codes:
            continue
        if await repos.courses.find_active_by_code(code, teacher_id=teacher_id):
            raise CourseCodeInUse(f"Course code {code} is still used by an active course")

    async with UnitOfWork(db) as uow:
        repos.teachers.update(uow, teacher_id, {"courseCodes": new_codes})
    logger.info(f"Teacher {teacher_id} course codes ({action}): {new_codes}")
    return await repos.teachers.get(teacher_id)


async def assign_student_teacher(db: AsyncIOMotorDatabase, student_id: str, teacher_id: str) -> dict:
    repos = Repositories(db)
    student = await repos.students.get(student_id)
    if not student:
        raise StudentNotFound("Student not found")
    teacher = await repos.teachers.get(teacher_id)
    if not teacher:
        raise TeacherNotFound("Teacher not found")

    fields = {"teacher": teacher["id"], "teacherEmail": teacher["email"]}
    async with UnitOfWork(db) as uow:
        repos.students.update(uow, student_id, fields)
        await reconcile_student(repos, uow, {**student, **fields})
    logger.info(f"Student {student_id} assigned to teacher {teacher_id}")
    return await repos.students.get(student_id)


async def rename_course_code(db: AsyncIOMotorDatabase, course_code: str, new_code: Optional[str] = None,
                             add_teachers: List[str] = (), remove_teachers: List[str] = ()) -> dict:
    """Rename a code on every teacher, student and course, then adjust which teachers hold it.

    Missing teachers and teachers whose active course still carries the code
    are reported in ``errors`` rather than failing the whole call.
    """
    repos = Repositories(db)
    old = normalize_code(course_code)
    target = normalize_code(new_code) if new_code else old
    renaming = target != old

    if renaming and await repos.courses.find_one({"courseCode": target}):
        raise DuplicateCourseCode(f"Course code {target} is already in use")
    courses = await repos.courses.find({"courseCode": old}) if renaming else []

    enrolled, unenrolled = [], []
    updated_teachers, errors = [], []
    async with UnitOfWork(db) as uow:
        if renaming:
            repos.teachers.rename_code(uow, old, target)
            repos.students.rename_code(uow, old, target)
            repos.courses.rename_code(uow, old, target)
            # reads still see the old code, so re-sync each course against it
            for course in courses:
                unenrolled += await sync_on_revoke(repos, uow, course["teacher"], old, course["id"])
                enrolled += await sync_on_grant(repos, uow, course["teacher"], old, course["id"])

        for email in add_teachers:
            teacher = await repos.teachers.get_by_email(email)
            if not teacher:
                errors.append(f"Teacher not found: {email}")
                continue
            codes = teacher.get("courseCodes", [])
            if target in codes or (renaming and old in codes):
                continue
            repos.teachers.add_code(uow, teacher["id"], target)
            updated_teachers.append({"email": teacher["email"], "action": "added"})

        for email in remove_teachers:
            teacher = await repos.teachers.get_by_email(email)
            if not teacher:
                errors.append(f"Teacher not found: {email}")
                continue
            codes = teacher.get("courseCodes", [])
            if not (target in codes or (renaming and old in codes)):
                continue
            if await repos.courses.find_active_by_code(old, teacher_id=teacher["id"]):
                errors.append(f"Course code {target} is still used by an active course of {email}")
                continue
            repos.teachers.remove_code(uow, teacher["id"], target)
            updated_teachers.append({"email": teacher["email"], "action": "removed"})

    logger.info(f"Course code {old} -> {target}: {len(courses)} courses renamed, "
                f"{len(updated_teachers)} teachers updated, {len(errors)} errors")
    return {
        "originalCourseCode": old,
        "newCourseCode": target,
        "coursesRenamed": len(courses),
        "enrolled": enrolled,
        "unenrolled": unenrolled,
        "updatedTeachers": updated_teachers,
        "errors": errors,
    }
