# models/course.py
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional
import re

COURSE_CODE_PATTERN = re.compile(r"^[A-Z0-9][A-Z0-9_\-]{0,31}$")


def normalize_code(code: str) -> str:
    return code.strip().upper()


def validate_code(code: str) -> str:
    normalized = normalize_code(code)
    if not normalized:
        raise ValueError("Course code is required")
    if not COURSE_CODE_PATTERN.match(normalized):
        raise ValueError(f"Invalid course code: {code}")
    return normalized


class ClassDay(BaseModel):
    day: str
    time: str


class CourseSchedule(BaseModel):
    classStartDate: Optional[str] = None
    classEndDate: Optional[str] = None
    midSemesterExamDate: Optional[str] = None
    endSemesterExamDate: Optional[str] = None
    classDaysAndTimes: List[ClassDay] = []


class WeekPlan(BaseModel):
    weekNumber: int = Field(..., ge=1)
    topics: List[str] = []


class CreditPoints(BaseModel):
    lecture: int = Field(0, ge=0)
    tutorial: int = Field(0, ge=0)
    practical: int = Field(0, ge=0)
    project: int = Field(0, ge=0)


class Attendance(BaseModel):
    sessions: Dict[str, Any] = {}


class ModuleOutline(BaseModel):
    moduleNumber: Optional[int] = Field(None, gt=0)
    title: Optional[str] = None
    description: str = ""


class SyllabusOutline(BaseModel):
    modules: List[ModuleOutline] = []


class CourseCreate(BaseModel):
    courseCode: str
    title: str
    description: str
    semester: Optional[str] = None
    teacherEmail: Optional[str] = None  # admin path only
    learningOutcomes: List[str] = []
    courseSchedule: Optional[CourseSchedule] = None
    weeklyPlan: List[WeekPlan] = []
    creditPoints: Optional[CreditPoints] = None
    attendance: Optional[Attendance] = None
    syllabus: Optional[SyllabusOutline] = None

    @field_validator("courseCode")
    @classmethod
    def _code(cls, v: str) -> str:
        return validate_code(v)

    @field_validator("title", "description")
    @classmethod
    def _required_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title and description are required")
        return v.strip()

    @field_validator("teacherEmail")
    @classmethod
    def _email(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else v


class CourseUpdate(BaseModel):
    # Teacher path: courseCode is the desired code.
    # Admin path: courseCode locates the course, newCourseCode renames it.
    courseCode: Optional[str] = None
    newCourseCode: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    semester: Optional[str] = None
    isActive: Optional[bool] = None
    teacherEmail: Optional[str] = None
    learningOutcomes: Optional[List[str]] = None
    courseSchedule: Optional[CourseSchedule] = None
    weeklyPlan: Optional[List[WeekPlan]] = None
    creditPoints: Optional[CreditPoints] = None
    attendance: Optional[Attendance] = None

    @field_validator("courseCode", "newCourseCode")
    @classmethod
    def _code(cls, v: Optional[str]) -> Optional[str]:
        return validate_code(v) if v is not None else v

    @field_validator("title", "description")
    @classmethod
    def _text(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Title and description cannot be blank")
        return v.strip() if v is not None else v

    @field_validator("teacherEmail")
    @classmethod
    def _email(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else v


class CourseCodeUpdate(BaseModel):
    newCourseCode: Optional[str] = None
    addTeachers: List[str] = []
    removeTeachers: List[str] = []

    @field_validator("newCourseCode")
    @classmethod
    def _code(cls, v: Optional[str]) -> Optional[str]:
        return validate_code(v) if v else None

    @field_validator("addTeachers", "removeTeachers")
    @classmethod
    def _emails(cls, v: List[str]) -> List[str]:
        return [email.strip().lower() for email in v if email.strip()]
