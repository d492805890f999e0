# services/repositories.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorDatabase

from .unit_of_work import UnitOfWork


HIDE_ID = {"_id": 0}


def new_id() -> str:
    return str(uuid4())


def now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Repository:
    """Reads hit the database directly; writes are queued on a UnitOfWork."""
    collection = ""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    @property
    def coll(self):
        return self.db[self.collection]

    async def get(self, id: str) -> Optional[dict]:
        return await self.coll.find_one({"id": id}, HIDE_ID)

    async def find_one(self, query: Dict[str, Any]) -> Optional[dict]:
        return await self.coll.find_one(query, HIDE_ID)

    async def find(self, query: Dict[str, Any]) -> List[dict]:
        return await self.coll.find(query, HIDE_ID).to_list(None)

    async def count(self, query: Dict[str, Any]) -> int:
        return await self.coll.count_documents(query)

    def create(self, uow: UnitOfWork, fields: Dict[str, Any], id: Optional[str] = None) -> dict:
        timestamp = now()
        doc = {"id": id or new_id(), **fields, "createdAt": timestamp, "updatedAt": timestamp}
        return uow.insert(self.collection, doc)

    def update(self, uow: UnitOfWork, id: str, fields: Dict[str, Any]):
        uow.update(self.collection, {"id": id}, {"$set": {**fields, "updatedAt": now()}})

    def delete(self, uow: UnitOfWork, id: str):
        uow.delete(self.collection, {"id": id})


class CourseScopedRepository(Repository):
    async def find_for_course(self, course_id: str) -> List[dict]:
        return await self.find({"course": course_id})

    def delete_for_course(self, uow: UnitOfWork, course_id: str):
        uow.delete_many(self.collection, {"course": course_id})


class CourseRepository(Repository):
    collection = "courses"

    async def find_active_by_code(self, code: str, teacher_id: Optional[str] = None,
                                  exclude_id: Optional[str] = None) -> Optional[dict]:
        query: Dict[str, Any] = {"courseCode": code, "isActive": True}
        if teacher_id:
            query["teacher"] = teacher_id
        if exclude_id:
            query["id"] = {"$ne": exclude_id}
        return await self.find_one(query)

    async def teacher_has_other_with_code(self, teacher_id: str, code: str, exclude_id: str) -> bool:
        count = await self.count({"teacher": teacher_id, "courseCode": code, "id": {"$ne": exclude_id}})
        return count > 0

    async def find_by_ref(self, ref: str) -> Optional[dict]:
        """Look a course up by id, then by code (active first)."""
        course = await self.get(ref)
        if course:
            return course
        code = ref.strip().upper()
        return await self.find_one({"courseCode": code, "isActive": True}) or await self.find_one({"courseCode": code})

    def rename_code(self, uow: UnitOfWork, old: str, new: str):
        uow.update_many(self.collection, {"courseCode": old}, {"$set": {"courseCode": new, "updatedAt": now()}})


class CodeHolderRepository(Repository):
    """Teachers and students both carry a courseCodes set."""

    def rename_code(self, uow: UnitOfWork, old: str, new: str):
        # $addToSet and $pull on the same path cannot share one update
        uow.update_many(self.collection, {"courseCodes": old}, {"$addToSet": {"courseCodes": new}})
        uow.update_many(self.collection, {"courseCodes": old}, {"$pull": {"courseCodes": old}})

    def remove_code_everywhere(self, uow: UnitOfWork, code: str):
        uow.update_many(self.collection, {"courseCodes": code}, {"$pull": {"courseCodes": code}})


class TeacherRepository(CodeHolderRepository):
    collection = "teachers"

    async def get_by_user(self, user_id: str) -> Optional[dict]:
        return await self.find_one({"user": user_id})

    async def get_by_email(self, email: str) -> Optional[dict]:
        return await self.find_one({"email": email.strip().lower()})

    def add_course(self, uow: UnitOfWork, teacher_id: str, course_id: str):
        uow.update(self.collection, {"id": teacher_id}, {"$addToSet": {"courses": course_id}})

    def remove_course(self, uow: UnitOfWork, teacher_id: str, course_id: str):
        uow.update(self.collection, {"id": teacher_id}, {"$pull": {"courses": course_id}})

    def add_code(self, uow: UnitOfWork, teacher_id: str, code: str):
        uow.update(self.collection, {"id": teacher_id}, {"$addToSet": {"courseCodes": code}})

    def remove_code(self, uow: UnitOfWork, teacher_id: str, code: str):
        uow.update(self.collection, {"id": teacher_id}, {"$pull": {"courseCodes": code}})


class StudentRepository(CodeHolderRepository):
    collection = "students"

    async def get_by_user(self, user_id: str) -> Optional[dict]:
        return await self.find_one({"user": user_id})

    async def find_referencing(self, course_id: str) -> List[dict]:
        return await self.find({"courses": course_id})

    def add_course(self, uow: UnitOfWork, student_id: str, course_id: str):
        uow.update(self.collection, {"id": student_id}, {"$addToSet": {"courses": course_id}})

    def remove_course(self, uow: UnitOfWork, student_id: str, course_id: str):
        uow.update(self.collection, {"id": student_id}, {"$pull": {"courses": course_id}})

    def remove_course_everywhere(self, uow: UnitOfWork, course_id: str):
        uow.update_many(self.collection, {"courses": course_id}, {"$pull": {"courses": course_id}})


class SyllabusRepository(CourseScopedRepository):
    """Modules are embedded; module-level writes address one module positionally."""
    collection = "syllabi"

    async def get_for_course(self, course_id: str) -> Optional[dict]:
        return await self.find_one({"course": course_id})

    @staticmethod
    def _module_query(syllabus_id: str, module_id: str) -> dict:
        return {"id": syllabus_id, "modules": {"$elemMatch": {"id": module_id}}}

    def push_module(self, uow: UnitOfWork, syllabus_id: str, module: dict):
        uow.update(self.collection, {"id": syllabus_id},
                   {"$push": {"modules": module}, "$set": {"updatedAt": now()}})

    def pull_module(self, uow: UnitOfWork, syllabus_id: str, module_id: str):
        uow.update(self.collection, {"id": syllabus_id},
                   {"$pull": {"modules": {"id": module_id}}, "$set": {"updatedAt": now()}})

    def set_module_fields(self, uow: UnitOfWork, syllabus_id: str, module_id: str, fields: Dict[str, Any]):
        changes = {f"modules.$.{name}": value for name, value in fields.items()}
        uow.update(self.collection, self._module_query(syllabus_id, module_id), {"$set": changes})

    def push_into_module(self, uow: UnitOfWork, syllabus_id: str, module_id: str, field: str, value: dict):
        uow.update(self.collection, self._module_query(syllabus_id, module_id),
                   {"$push": {f"modules.$.{field}": value}})

    def pull_from_module(self, uow: UnitOfWork, syllabus_id: str, module_id: str, field: str, item_id: str):
        uow.update(self.collection, self._module_query(syllabus_id, module_id),
                   {"$pull": {f"modules.$.{field}": {"id": item_id}}})

    # Nested elements are addressed by the index seen at read time. The query
    # re-checks that index still holds the same id, so a shifted array makes
    # the commit fail instead of touching a neighbour.

    @staticmethod
    def _element_query(syllabus_id: str, module_id: str, field: str, index: int,
                       element_id: str, **expected) -> dict:
        match = {"id": module_id, f"{field}.{index}.id": element_id}
        for name, value in expected.items():
            match[f"{field}.{index}.{name}"] = value
        return {"id": syllabus_id, "modules": {"$elemMatch": match}}

    def replace_in_module(self, uow: UnitOfWork, syllabus_id: str, module_id: str, field: str,
                          index: int, element: dict, **expected):
        uow.update(self.collection,
                   self._element_query(syllabus_id, module_id, field, index, element["id"], **expected),
                   {"$set": {f"modules.$.{field}.{index}": element}},
                   require_match=True)

    def push_article_ref(self, uow: UnitOfWork, syllabus_id: str, module_id: str, index: int,
                         chapter_id: str, article_id: str):
        uow.update(self.collection,
                   self._element_query(syllabus_id, module_id, "chapters", index, chapter_id),
                   {"$push": {f"modules.$.chapters.{index}.articles": article_id}},
                   require_match=True)

    def pull_article_ref(self, uow: UnitOfWork, syllabus_id: str, module_id: str, index: int,
                         chapter_id: str, article_id: str):
        uow.update(self.collection,
                   self._element_query(syllabus_id, module_id, "chapters", index, chapter_id),
                   {"$pull": {f"modules.$.chapters.{index}.articles": article_id}},
                   require_match=True)


class ArticleRepository(CourseScopedRepository):
    collection = "articles"

    def delete_ids(self, uow: UnitOfWork, ids: List[str]):
        if ids:
            uow.delete_many(self.collection, {"id": {"$in": ids}})


class OutcomeRepository(CourseScopedRepository):
    collection = "outcomes"


class ScheduleRepository(CourseScopedRepository):
    collection = "schedules"


class WeeklyPlanRepository(CourseScopedRepository):
    collection = "weekly_plans"


class CreditPointsRepository(CourseScopedRepository):
    collection = "credit_points"


class AttendanceRepository(CourseScopedRepository):
    collection = "attendance"


class LectureRepository(CourseScopedRepository):
    collection = "lectures"


class AssignmentRepository(CourseScopedRepository):
    collection = "assignments"


class AnnouncementRepository(CourseScopedRepository):
    collection = "announcements"


class DiscussionRepository(CourseScopedRepository):
    collection = "discussions"


class SupplementaryContentRepository(CourseScopedRepository):
    collection = "supplementary_content"


class Repositories:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.courses = CourseRepository(db)
        self.teachers = TeacherRepository(db)
        self.students = StudentRepository(db)
        self.syllabi = SyllabusRepository(db)
        self.articles = ArticleRepository(db)
        self.outcomes = OutcomeRepository(db)
        self.schedules = ScheduleRepository(db)
        self.weekly_plans = WeeklyPlanRepository(db)
        self.credit_points = CreditPointsRepository(db)
        self.attendance = AttendanceRepository(db)
        self.lectures = LectureRepository(db)
        self.assignments = AssignmentRepository(db)
        self.announcements = AnnouncementRepository(db)
        self.discussions = DiscussionRepository(db)
        self.supplementary = SupplementaryContentRepository(db)
