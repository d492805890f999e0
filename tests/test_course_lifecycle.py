import pytest
from pydantic import ValidationError

from conftest import ADMIN, fetch, teacher_identity
from models.course import CourseCreate, CourseUpdate
from services import course_lifecycle, enrollment
from services.errors import (
    CourseNotFound, DuplicateCourseCode, DuplicateModuleNumber, NotCourseOwner,
    TeacherNotFound, UnauthorizedCourseCode, ValidationFailed,
)
from services.repositories import StudentRepository

pytestmark = pytest.mark.anyio


FULL_PAYLOAD = dict(
    courseCode=" cs101 ",
    title="  Data Structures ",
    description="Lists, trees and graphs",
    learningOutcomes=["Analyse complexity"],
    courseSchedule={"classStartDate": "2025-02-01", "classEndDate": "2025-06-01",
                    "classDaysAndTimes": [{"day": "Monday", "time": "09:00"}]},
    weeklyPlan=[{"weekNumber": 1, "topics": ["Arrays"]}],
    creditPoints={"lecture": 3, "tutorial": 1},
    attendance={"sessions": {"2025-02-03": {"present": []}}},
    syllabus={"modules": [{"title": "Foundations"}, {"moduleNumber": 5}]},
)


async def count_all(db):
    counts = {}
    for name in ("courses", "outcomes", "schedules", "weekly_plans", "credit_points",
                 "attendance", "syllabi"):
        counts[name] = await db[name].count_documents({})
    return counts


class TestCreate:
    async def test_teacher_create_wires_every_satellite(self, db, make_teacher):
        teacher = await make_teacher()
        result = await course_lifecycle.create_course(db, CourseCreate(**FULL_PAYLOAD), teacher_identity(teacher))
        course = await fetch(db, "courses", result.course["id"])

        assert course["courseCode"] == "CS101"
        assert course["title"] == "Data Structures"
        assert course["isActive"] is True
        assert (await fetch(db, "outcomes", course["outcomes"]))["outcomes"] == ["Analyse complexity"]
        assert (await fetch(db, "schedules", course["schedule"]))["course"] == course["id"]
        assert (await fetch(db, "weekly_plans", course["weeklyPlan"]))["weeks"][0]["topics"] == ["Arrays"]
        assert (await fetch(db, "credit_points", course["creditPoints"]))["lecture"] == 3
        assert "2025-02-03" in (await fetch(db, "attendance", course["attendance"]))["sessions"]

        modules = (await fetch(db, "syllabi", course["syllabus"]))["modules"]
        assert [(m["moduleNumber"], m["title"], m["order"]) for m in modules] == [
            (1, "Foundations", 1), (5, "Module 5", 2),
        ]
        assert (await fetch(db, "teachers", teacher["id"]))["courses"] == [course["id"]]

    async def test_minimal_teacher_create_has_no_satellites(self, db, make_teacher):
        teacher = await make_teacher()
        data = CourseCreate(courseCode="CS101", title="T", description="D", learningOutcomes=[], weeklyPlan=[])
        result = await course_lifecycle.create_course(db, data, teacher_identity(teacher))
        for field in ("outcomes", "schedule", "weeklyPlan", "creditPoints", "attendance", "syllabus"):
            assert field not in result.course

    async def test_unauthorized_code(self, db, make_teacher):
        teacher = await make_teacher(codes=("CS201",))
        with pytest.raises(UnauthorizedCourseCode):
            await course_lifecycle.create_course(
                db, CourseCreate(courseCode="CS101", title="T", description="D"), teacher_identity(teacher)
            )
        assert await db.courses.count_documents({}) == 0

    async def test_duplicate_active_code_for_same_teacher(self, db, make_teacher):
        teacher = await make_teacher()
        data = CourseCreate(courseCode="CS101", title="T", description="D")
        await course_lifecycle.create_course(db, data, teacher_identity(teacher))
        with pytest.raises(DuplicateCourseCode):
            await course_lifecycle.create_course(db, data, teacher_identity(teacher))

    async def test_duplicate_module_numbers_rejected_before_writes(self, db, make_teacher):
        teacher = await make_teacher()
        data = CourseCreate(courseCode="CS101", title="T", description="D",
                            syllabus={"modules": [{"moduleNumber": 2}, {"moduleNumber": 2}]})
        with pytest.raises(DuplicateModuleNumber):
            await course_lifecycle.create_course(db, data, teacher_identity(teacher))
        assert all(v == 0 for v in (await count_all(db)).values())

    def test_payload_validation(self):
        with pytest.raises(ValidationError):
            CourseCreate(courseCode="   ", title="T", description="D")
        with pytest.raises(ValidationError):
            CourseCreate(courseCode="CS101", title="  ", description="D")
        with pytest.raises(ValidationError):
            CourseCreate(courseCode="CS101", title="T", description="D", creditPoints={"lecture": -1})

    async def test_students_cannot_create(self, db):
        with pytest.raises(NotCourseOwner):
            await course_lifecycle.create_course(
                db, CourseCreate(courseCode="CS101", title="T", description="D"), {"id": "u", "role": "student"}
            )

    async def test_admin_create_grants_code_and_empty_syllabus(self, db, make_teacher, make_student):
        teacher = await make_teacher(codes=(), email="ada@school.test")
        student = await make_student(teacher, codes=("MA100",))
        data = CourseCreate(courseCode="ma100", title="Calculus", description="Limits", teacherEmail="ADA@school.test")

        result = await course_lifecycle.create_course(db, data, ADMIN)

        stored_teacher = await fetch(db, "teachers", teacher["id"])
        assert stored_teacher["courseCodes"] == ["MA100"]
        assert stored_teacher["courses"] == [result.course["id"]]
        assert (await fetch(db, "syllabi", result.course["syllabus"]))["modules"] == []
        assert result.enrolled == [student["id"]]

    async def test_admin_create_rejects_code_held_by_anyone(self, db, make_teacher):
        first = await make_teacher(codes=("CS101",))
        await make_teacher(codes=(), email="b@school.test")
        await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS101", title="T", description="D"), teacher_identity(first)
        )
        with pytest.raises(DuplicateCourseCode):
            await course_lifecycle.create_course(
                db, CourseCreate(courseCode="CS101", title="T", description="D", teacherEmail="b@school.test"), ADMIN
            )

    async def test_admin_create_needs_known_teacher(self, db):
        with pytest.raises(TeacherNotFound):
            await course_lifecycle.create_course(
                db, CourseCreate(courseCode="CS101", title="T", description="D", teacherEmail="x@y.z"), ADMIN
            )
        with pytest.raises(ValidationFailed):
            await course_lifecycle.create_course(
                db, CourseCreate(courseCode="CS101", title="T", description="D"), ADMIN
            )

    async def test_failure_midway_leaves_nothing_behind(self, db, make_teacher, make_student, monkeypatch):
        teacher = await make_teacher()
        student = await make_student(teacher)

        async def broken_grant(*args, **kwargs):
            raise RuntimeError("fan-out failed")

        monkeypatch.setattr(course_lifecycle, "sync_on_grant", broken_grant)
        with pytest.raises(RuntimeError):
            await course_lifecycle.create_course(db, CourseCreate(**FULL_PAYLOAD), teacher_identity(teacher))

        assert all(v == 0 for v in (await count_all(db)).values())
        assert (await fetch(db, "teachers", teacher["id"]))["courses"] == []
        assert (await fetch(db, "students", student["id"]))["courses"] == []


class TestUpdate:
    async def test_fields_and_satellite_upserts(self, db, make_teacher):
        teacher = await make_teacher()
        created = await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS101", title="T", description="D", learningOutcomes=["a"]),
            teacher_identity(teacher),
        )
        course_id = created.course["id"]
        outcomes_id = created.course["outcomes"]

        patch = CourseUpdate(title="New title", isActive=False, learningOutcomes=["a", "b"],
                             creditPoints={"lecture": 2})
        result = await course_lifecycle.update_course(db, course_id, patch, teacher_identity(teacher))

        assert result.course["title"] == "New title"
        assert result.course["isActive"] is False
        assert result.course["outcomes"] == outcomes_id
        assert (await fetch(db, "outcomes", outcomes_id))["outcomes"] == ["a", "b"]
        assert (await fetch(db, "credit_points", result.course["creditPoints"]))["lecture"] == 2
        assert await db.outcomes.count_documents({}) == 1

    async def test_invalid_satellite_aborts_whole_update(self, db, make_teacher):
        teacher = await make_teacher()
        created = await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS101", title="T", description="D"), teacher_identity(teacher)
        )
        patch = CourseUpdate(title="Changed", creditPoints={"lecture": 1},
                             weeklyPlan=[{"weekNumber": 1}, {"weekNumber": 1}])

        with pytest.raises(ValidationFailed):
            await course_lifecycle.update_course(db, created.course["id"], patch, teacher_identity(teacher))

        course = await fetch(db, "courses", created.course["id"])
        assert course["title"] == "T"
        assert "creditPoints" not in course
        assert await db.credit_points.count_documents({}) == 0

    async def test_teacher_cannot_touch_foreign_course(self, db, make_teacher):
        owner = await make_teacher()
        intruder = await make_teacher()
        created = await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS101", title="T", description="D"), teacher_identity(owner)
        )
        with pytest.raises(CourseNotFound):
            await course_lifecycle.update_course(db, created.course["id"], CourseUpdate(title="x"),
                                                 teacher_identity(intruder))

    async def test_teacher_code_change_needs_authorization(self, db, make_teacher):
        teacher = await make_teacher()
        created = await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS101", title="T", description="D"), teacher_identity(teacher)
        )
        with pytest.raises(UnauthorizedCourseCode):
            await course_lifecycle.update_course(db, created.course["id"], CourseUpdate(courseCode="CS999"),
                                                 teacher_identity(teacher))

    async def test_admin_moves_course_to_another_teacher(self, db, make_teacher, make_student):
        old = await make_teacher(codes=("CS101",))
        new = await make_teacher(codes=(), email="new@school.test")
        old_student = await make_student(old)
        new_student = await make_student(new, codes=("CS101",))
        created = await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS101", title="T", description="D"), teacher_identity(old)
        )

        result = await course_lifecycle.update_course(
            db, created.course["id"], CourseUpdate(teacherEmail="new@school.test"), ADMIN
        )

        assert result.course["teacher"] == new["id"]
        old_doc = await fetch(db, "teachers", old["id"])
        new_doc = await fetch(db, "teachers", new["id"])
        assert old_doc["courses"] == [] and old_doc["courseCodes"] == []
        assert new_doc["courses"] == [created.course["id"]] and new_doc["courseCodes"] == ["CS101"]
        assert (await fetch(db, "students", old_student["id"]))["courses"] == []
        assert (await fetch(db, "students", new_student["id"]))["courses"] == [created.course["id"]]

    async def test_old_teacher_keeps_code_used_elsewhere(self, db, make_teacher):
        old = await make_teacher(codes=("CS101",))
        await make_teacher(codes=(), email="new@school.test")
        first = await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS101", title="T", description="D"), teacher_identity(old)
        )
        await course_lifecycle.update_course(db, first.course["id"], CourseUpdate(isActive=False),
                                             teacher_identity(old))
        await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS101", title="T2", description="D"), teacher_identity(old)
        )

        await course_lifecycle.update_course(db, first.course["id"], CourseUpdate(teacherEmail="new@school.test"), ADMIN)

        assert (await fetch(db, "teachers", old["id"]))["courseCodes"] == ["CS101"]

    async def test_failed_code_reassignment_changes_nothing(self, db, make_teacher, make_student, monkeypatch):
        teacher = await make_teacher(codes=("CS101",))
        holder = await make_student(teacher, codes=("CS101",))
        newcomer = await make_student(teacher, codes=("CS300",))
        created = await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS101", title="T", description="D"), teacher_identity(teacher)
        )
        course_id = created.course["id"]

        async def broken_grant(*args, **kwargs):
            raise RuntimeError("fan-out failed")

        monkeypatch.setattr(course_lifecycle, "sync_on_grant", broken_grant)
        with pytest.raises(RuntimeError):
            await course_lifecycle.update_course(db, course_id, CourseUpdate(newCourseCode="CS300", title="Moved"),
                                                 ADMIN)

        course = await fetch(db, "courses", course_id)
        assert course["courseCode"] == "CS101" and course["title"] == "T"
        assert (await fetch(db, "teachers", teacher["id"]))["courseCodes"] == ["CS101"]
        assert (await fetch(db, "students", holder["id"]))["courses"] == [course_id]
        assert (await fetch(db, "students", newcomer["id"]))["courses"] == []


class TestDelete:
    async def seed_dependents(self, db, course_id):
        await db.lectures.insert_one({"id": "l1", "course": course_id, "videoKey": "lectures/1.mp4"})
        await db.assignments.insert_one({
            "id": "a1", "course": course_id,
            "attachments": [{"key": "assignments/brief.pdf"}],
            "submissions": [{"submissionFileKey": "submissions/s1.pdf"}, {"submissionFileKey": None}],
        })
        await db.announcements.insert_one({"id": "n1", "course": course_id, "image": {"url": "u", "key": "ann/1.png"}})
        await db.discussions.insert_one({
            "id": "d1", "course": course_id,
            "attachments": [{"fileKey": "disc/top.png"}],
            "comments": [{"attachments": [{"fileKey": "disc/c1.png"}],
                          "replies": [{"attachments": [{"fileKey": "disc/r1.png"}]}]}],
        })
        await db.supplementary_content.insert_one({
            "id": "sc1", "course": course_id, "modules": [{"files": [{"fileKey": "supp/1.zip"}]}],
        })
        await db.articles.insert_one({"id": "art1", "course": course_id, "image": {"url": "u", "key": "article-images/1.png"}})

    async def test_cascade_removes_everything(self, db, make_teacher, make_student):
        teacher = await make_teacher()
        student = await make_student(teacher)
        created = await course_lifecycle.create_course(db, CourseCreate(**FULL_PAYLOAD), teacher_identity(teacher))
        course_id = created.course["id"]
        syllabus = await fetch(db, "syllabi", created.course["syllabus"])
        modules = syllabus["modules"]
        modules[0]["contents"].append({"id": "i1", "type": "pdf", "fileKey": "syllabus-pdfs/1.pdf",
                                       "thumbnail": {"url": "u", "key": "thumbs/1.png"}})
        await db.syllabi.update_one({"id": syllabus["id"]}, {"$set": {"modules": modules}})
        await self.seed_dependents(db, course_id)

        result = await course_lifecycle.delete_course(db, course_id, teacher_identity(teacher))

        assert sorted(result.manifest.blobKeys) == sorted([
            "syllabus-pdfs/1.pdf", "thumbs/1.png", "article-images/1.png", "lectures/1.mp4",
            "assignments/brief.pdf", "submissions/s1.pdf", "ann/1.png", "disc/top.png",
            "disc/c1.png", "disc/r1.png", "supp/1.zip",
        ])
        counts = result.manifest.deletedCounts
        assert counts["satellites"] == 5
        assert counts["modules"] == 2
        assert counts["studentsAffected"] == 1
        assert result.unenrolled == [student["id"]]

        for name in ("courses", "outcomes", "schedules", "weekly_plans", "credit_points", "attendance",
                     "syllabi", "articles", "lectures", "assignments", "announcements", "discussions",
                     "supplementary_content"):
            assert await db[name].count_documents({}) == 0, name
        assert (await fetch(db, "teachers", teacher["id"]))["courses"] == []
        assert (await fetch(db, "students", student["id"]))["courses"] == []
        # a teacher's own delete keeps the authorization
        assert (await fetch(db, "teachers", teacher["id"]))["courseCodes"] == ["CS101"]

    async def test_admin_delete_by_code_prunes_code(self, db, make_teacher):
        teacher = await make_teacher()
        await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS101", title="T", description="D"), teacher_identity(teacher)
        )
        await course_lifecycle.delete_course(db, "cs101", ADMIN)
        assert (await fetch(db, "teachers", teacher["id"]))["courseCodes"] == []
        assert await db.courses.count_documents({}) == 0

    async def test_delete_unknown_course(self, db, make_teacher):
        teacher = await make_teacher()
        with pytest.raises(CourseNotFound):
            await course_lifecycle.delete_course(db, "missing", teacher_identity(teacher))

    async def test_students_keep_nothing_dangling_after_delete(self, db, make_teacher, make_student):
        teacher = await make_teacher()
        student = await make_student(teacher)
        created = await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS101", title="T", description="D"), teacher_identity(teacher)
        )
        await course_lifecycle.delete_course(db, created.course["id"], teacher_identity(teacher))
        updated = await enrollment.update_student_codes(db, student["id"], ["CS101"])
        assert updated["courses"] == []

    async def test_failure_inside_cascade_keeps_everything(self, db, make_teacher, make_student, monkeypatch):
        teacher = await make_teacher()
        student = await make_student(teacher)
        created = await course_lifecycle.create_course(db, CourseCreate(**FULL_PAYLOAD), teacher_identity(teacher))
        course_id = created.course["id"]
        await self.seed_dependents(db, course_id)
        before = await count_all(db)

        async def broken_lookup(self, course_id):
            raise RuntimeError("lookup failed")

        monkeypatch.setattr(StudentRepository, "find_referencing", broken_lookup)
        with pytest.raises(RuntimeError):
            await course_lifecycle.delete_course(db, course_id, ADMIN)

        assert await count_all(db) == before
        for name in ("articles", "lectures", "assignments", "announcements", "discussions", "supplementary_content"):
            assert await db[name].count_documents({}) == 1, name
        stored_teacher = await fetch(db, "teachers", teacher["id"])
        assert stored_teacher["courses"] == [course_id] and stored_teacher["courseCodes"] == ["CS101"]
        assert (await fetch(db, "students", student["id"]))["courses"] == [course_id]

    async def test_admin_deletes_a_code_everywhere(self, db, make_teacher, make_student):
        first = await make_teacher(codes=("CS101", "CS102"))
        second = await make_teacher(codes=("CS101",))
        both = await make_student(first, codes=("CS101", "CS102"))
        only = await make_student(second, codes=("CS101",))
        doomed = await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS101", title="A", description="D"), teacher_identity(first)
        )
        await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS101", title="B", description="D"), teacher_identity(second)
        )
        kept = await course_lifecycle.create_course(
            db, CourseCreate(courseCode="CS102", title="C", description="D"), teacher_identity(first)
        )
        await self.seed_dependents(db, doomed.course["id"])

        manifest = await course_lifecycle.delete_course_code(db, " cs101 ")

        assert manifest.deletedCounts["courses"] == 2
        assert manifest.deletedCounts["studentsAffected"] == 2
        assert manifest.deletedCounts["lectures"] == 1
        assert "lectures/1.mp4" in manifest.blobKeys
        assert [c["id"] for c in await db.courses.find({}, {"_id": 0}).to_list(None)] == [kept.course["id"]]
        assert await db.lectures.count_documents({}) == 0

        kept_id = kept.course["id"]
        assert (await fetch(db, "teachers", first["id"]))["courseCodes"] == ["CS102"]
        assert (await fetch(db, "teachers", first["id"]))["courses"] == [kept_id]
        assert (await fetch(db, "teachers", second["id"]))["courseCodes"] == []
        assert (await fetch(db, "students", both["id"]))["courseCodes"] == ["CS102"]
        assert (await fetch(db, "students", both["id"]))["courses"] == [kept_id]
        assert (await fetch(db, "students", only["id"]))["courses"] == []
