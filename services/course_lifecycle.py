# services/course_lifecycle.py
from typing import Any, Dict, List, Optional, Tuple
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase

from models.course import CourseCreate, CourseUpdate, SyllabusOutline, normalize_code
from models.lifecycle import CleanupManifest, LifecycleResult
from models.syllabus import Module
from . import cleanup
from .enrollment import sync_on_grant, sync_on_revoke
from .errors import (
    CourseNotFound, DuplicateCourseCode, DuplicateModuleNumber, NotCourseOwner,
    TeacherNotFound, UnauthorizedCourseCode, ValidationFailed,
)
from .repositories import CourseScopedRepository, Repositories, new_id, now
from .unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

# course field -> repositories attribute
SATELLITES = (
    ("outcomes", "outcomes"),
    ("schedule", "schedules"),
    ("weeklyPlan", "weekly_plans"),
    ("creditPoints", "credit_points"),
    ("attendance", "attendance"),
)


def _satellite_payloads(data, creating: bool) -> List[Tuple[str, Dict[str, Any]]]:
    """Satellite documents present in a create or update payload.

    On create, empty lists count as absent; on update any non-null value is
    written as given.
    """
    payloads = []
    if data.learningOutcomes is not None and (data.learningOutcomes or not creating):
        payloads.append(("outcomes", {"outcomes": data.learningOutcomes}))
    if data.courseSchedule is not None:
        schedule = data.courseSchedule
        if schedule.classStartDate and schedule.classEndDate and schedule.classEndDate < schedule.classStartDate:
            raise ValidationFailed("Class end date must not precede the start date")
        payloads.append(("schedule", schedule.model_dump()))
    if data.weeklyPlan is not None and (data.weeklyPlan or not creating):
        numbers = [week.weekNumber for week in data.weeklyPlan]
        if len(numbers) != len(set(numbers)):
            raise ValidationFailed("Week numbers in a weekly plan must be unique")
        payloads.append(("weeklyPlan", {"weeks": [week.model_dump() for week in data.weeklyPlan]}))
    if data.creditPoints is not None:
        payloads.append(("creditPoints", data.creditPoints.model_dump()))
    if data.attendance is not None and (data.attendance.sessions or not creating):
        payloads.append(("attendance", {"sessions": data.attendance.sessions}))
    return payloads


def _initial_modules(syllabus: Optional[SyllabusOutline]) -> List[dict]:
    if not syllabus:
        return []
    modules, seen = [], set()
    timestamp = now()
    for index, outline in enumerate(syllabus.modules):
        number = outline.moduleNumber or index + 1
        if number in seen:
            raise DuplicateModuleNumber(f"Duplicate module number: {number}")
        seen.add(number)
        modules.append(Module(
            id=new_id(),
            moduleNumber=number,
            title=(outline.title or "").strip() or f"Module {number}",
            description=outline.description,
            order=index + 1,
            createdAt=timestamp,
            updatedAt=timestamp,
        ).model_dump())
    return modules


async def _teacher_for_identity(repos: Repositories, identity: dict) -> dict:
    teacher = await repos.teachers.get_by_user(identity["id"])
    if not teacher:
        raise TeacherNotFound("Teacher not found")
    return teacher


async def _locate_course(repos: Repositories, course_ref: str, identity: dict) -> Tuple[dict, bool]:
    """Resolve the course for the caller; returns (course, is_admin)."""
    role = identity.get("role")
    if role == "admin":
        course = await repos.courses.find_by_ref(course_ref)
        if not course:
            raise CourseNotFound("Course not found")
        return course, True
    if role == "teacher":
        teacher = await _teacher_for_identity(repos, identity)
        course = await repos.courses.find_one({"id": course_ref, "teacher": teacher["id"]})
        if not course:
            raise CourseNotFound("Course not found or unauthorized access")
        return course, False
    raise NotCourseOwner("Only teachers and admins can manage courses")


async def _prune_code(repos: Repositories, uow: UnitOfWork, teacher: dict, code: str, course_id: str):
    if not await repos.courses.teacher_has_other_with_code(teacher["id"], code, course_id):
        repos.teachers.remove_code(uow, teacher["id"], code)


async def create_course(db: AsyncIOMotorDatabase, data: CourseCreate, identity: dict) -> LifecycleResult:
    repos = Repositories(db)
    code = data.courseCode
    role = identity.get("role")

    if role == "admin":
        if not data.teacherEmail:
            raise ValidationFailed("teacherEmail is required")
        teacher = await repos.teachers.get_by_email(data.teacherEmail)
        if not teacher:
            raise TeacherNotFound(f"Teacher not found: {data.teacherEmail}")
        if await repos.courses.find_active_by_code(code):
            raise DuplicateCourseCode(f"Course code {code} is already in use")
    elif role == "teacher":
        teacher = await _teacher_for_identity(repos, identity)
        if code not in teacher.get("courseCodes", []):
            raise UnauthorizedCourseCode(f"You are not authorized to create a course with code {code}")
        if await repos.courses.find_active_by_code(code, teacher_id=teacher["id"]):
            raise DuplicateCourseCode(f"You already have an active course with code {code}")
    else:
        raise NotCourseOwner("Only teachers and admins can create courses")

    modules = _initial_modules(data.syllabus)
    course_id = new_id()
    course = {
        "title": data.title,
        "description": data.description,
        "courseCode": code,
        "teacher": teacher["id"],
        "semester": data.semester,
        "isActive": True,
    }

    async with UnitOfWork(db) as uow:
        for field, fields in _satellite_payloads(data, creating=True):
            repo: CourseScopedRepository = getattr(repos, dict(SATELLITES)[field])
            course[field] = repo.create(uow, {**fields, "course": course_id})["id"]
        if modules or role == "admin":
            course["syllabus"] = repos.syllabi.create(uow, {"course": course_id, "modules": modules})["id"]

        course = repos.courses.create(uow, course, id=course_id)
        if code not in teacher.get("courseCodes", []):
            repos.teachers.add_code(uow, teacher["id"], code)
        repos.teachers.add_course(uow, teacher["id"], course_id)
        enrolled = await sync_on_grant(repos, uow, teacher["id"], code, course_id)

    logger.info(f"Course {course_id} ({code}) created for teacher {teacher['id']}")
    return LifecycleResult(course=course, enrolled=enrolled)


async def update_course(db: AsyncIOMotorDatabase, course_ref: str, patch: CourseUpdate,
                        identity: dict) -> LifecycleResult:
    repos = Repositories(db)
    course, is_admin = await _locate_course(repos, course_ref, identity)
    course_id = course["id"]
    old_code = course["courseCode"]

    owner = await repos.teachers.get(course["teacher"])
    if not owner:
        raise TeacherNotFound("Course teacher not found")

    target = owner
    if patch.teacherEmail and patch.teacherEmail != owner.get("email"):
        if not is_admin:
            raise NotCourseOwner("Only admins can move a course to another teacher")
        target = await repos.teachers.get_by_email(patch.teacherEmail)
        if not target:
            raise TeacherNotFound(f"Teacher not found: {patch.teacherEmail}")
    teacher_changed = target["id"] != owner["id"]

    requested = patch.newCourseCode if is_admin else patch.courseCode
    code_changed = bool(requested) and requested != old_code
    final_code = requested if code_changed else old_code

    if code_changed:
        if is_admin:
            if await repos.courses.find_active_by_code(final_code, exclude_id=course_id):
                raise DuplicateCourseCode(f"Course code {final_code} is already in use")
        elif final_code not in owner.get("courseCodes", []):
            raise UnauthorizedCourseCode(f"You are not authorized to use course code {final_code}")
    if not is_admin and patch.isActive and final_code not in owner.get("courseCodes", []):
        raise UnauthorizedCourseCode(f"You are no longer authorized for course code {final_code}")

    fields: Dict[str, Any] = {}
    for name in ("title", "description", "semester", "isActive"):
        value = getattr(patch, name)
        if value is not None:
            fields[name] = value
    if code_changed:
        fields["courseCode"] = final_code
    if teacher_changed:
        fields["teacher"] = target["id"]

    enrolled, unenrolled = [], []
    async with UnitOfWork(db) as uow:
        for field, data in _satellite_payloads(patch, creating=False):
            repo: CourseScopedRepository = getattr(repos, dict(SATELLITES)[field])
            if course.get(field):
                repo.update(uow, course[field], data)
            else:
                fields[field] = repo.create(uow, {**data, "course": course_id})["id"]

        if teacher_changed:
            repos.teachers.remove_course(uow, owner["id"], course_id)
            await _prune_code(repos, uow, owner, old_code, course_id)
            repos.teachers.add_course(uow, target["id"], course_id)
            if final_code not in target.get("courseCodes", []):
                repos.teachers.add_code(uow, target["id"], final_code)
        elif is_admin and (code_changed or patch.isActive):
            if final_code not in owner.get("courseCodes", []):
                repos.teachers.add_code(uow, owner["id"], final_code)
            if code_changed:
                await _prune_code(repos, uow, owner, old_code, course_id)

        if code_changed or teacher_changed:
            unenrolled = await sync_on_revoke(repos, uow, target["id"], final_code, course_id)
            enrolled = await sync_on_grant(repos, uow, target["id"], final_code, course_id)

        repos.courses.update(uow, course_id, fields)

    logger.info(f"Course {course_id} updated: {sorted(fields)}")
    return LifecycleResult(course=await repos.courses.get(course_id), enrolled=enrolled, unenrolled=unenrolled)


async def _queue_cascade(repos: Repositories, uow: UnitOfWork,
                         course: dict) -> Tuple[Dict[str, int], List[str], List[str]]:
    """Queue removal of a course and everything it owns; returns (counts, blob keys, unenrolled ids)."""
    course_id = course["id"]
    counts: Dict[str, int] = {}
    keys: List[str] = []

    removed = 0
    for field, attr in SATELLITES:
        if course.get(field):
            getattr(repos, attr).delete(uow, course[field])
            removed += 1
    counts["satellites"] = removed

    syllabus = await repos.syllabi.get_for_course(course_id)
    if syllabus:
        keys += cleanup.syllabus_keys(syllabus)
        modules = syllabus.get("modules", [])
        counts["modules"] = len(modules)
        counts["chapters"] = sum(len(m.get("chapters", [])) for m in modules)
        counts["contentItems"] = sum(len(m.get("contents", [])) for m in modules)
        repos.syllabi.delete(uow, syllabus["id"])

    for name, repo, collect in (
        ("articles", repos.articles, cleanup.article_keys),
        ("lectures", repos.lectures, cleanup.lecture_keys),
        ("assignments", repos.assignments, cleanup.assignment_keys),
        ("announcements", repos.announcements, cleanup.announcement_keys),
        ("discussions", repos.discussions, cleanup.discussion_keys),
        ("supplementaryContent", repos.supplementary, cleanup.supplementary_keys),
    ):
        rows = await repo.find_for_course(course_id)
        for row in rows:
            keys += collect(row)
        counts[name] = len(rows)
        repo.delete_for_course(uow, course_id)

    students = await repos.students.find_referencing(course_id)
    counts["studentsAffected"] = len(students)
    repos.students.remove_course_everywhere(uow, course_id)

    repos.teachers.remove_course(uow, course["teacher"], course_id)
    repos.courses.delete(uow, course_id)
    return counts, keys, [s["id"] for s in students]


async def delete_course(db: AsyncIOMotorDatabase, course_ref: str, identity: dict) -> LifecycleResult:
    repos = Repositories(db)
    course, is_admin = await _locate_course(repos, course_ref, identity)
    course_id = course["id"]
    owner = await repos.teachers.get(course["teacher"])

    async with UnitOfWork(db) as uow:
        counts, keys, unenrolled = await _queue_cascade(repos, uow, course)
        if owner and is_admin:
            await _prune_code(repos, uow, owner, course["courseCode"], course_id)

    manifest = CleanupManifest(deletedCounts=counts, blobKeys=cleanup.dedupe(keys))
    logger.info(f"Course {course_id} deleted: {counts}, {len(manifest.blobKeys)} blobs to purge")
    return LifecycleResult(course=course, unenrolled=unenrolled, manifest=manifest)


async def delete_course_code(db: AsyncIOMotorDatabase, course_code: str) -> CleanupManifest:
    """Admin only: delete every course carrying a code, then take the code from every teacher and student."""
    repos = Repositories(db)
    code = normalize_code(course_code)
    courses = await repos.courses.find({"courseCode": code})

    totals: Dict[str, int] = {"courses": len(courses)}
    keys: List[str] = []
    async with UnitOfWork(db) as uow:
        for course in courses:
            counts, course_keys, _ = await _queue_cascade(repos, uow, course)
            for name, count in counts.items():
                totals[name] = totals.get(name, 0) + count
            keys += course_keys
        repos.teachers.remove_code_everywhere(uow, code)
        repos.students.remove_code_everywhere(uow, code)

    manifest = CleanupManifest(deletedCounts=totals, blobKeys=cleanup.dedupe(keys))
    logger.info(f"Course code {code} deleted: {totals}, {len(manifest.blobKeys)} blobs to purge")
    return manifest
