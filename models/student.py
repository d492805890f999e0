# models/student.py
from pydantic import BaseModel, field_validator
from typing import List, Literal

from .course import validate_code


class CourseCodesUpdate(BaseModel):
    courseCodes: List[str]
    action: Literal["add", "remove", "replace"] = "replace"

    @field_validator("courseCodes")
    @classmethod
    def _codes(cls, v: List[str]) -> List[str]:
        codes = []
        for code in v:
            normalized = validate_code(code)
            if normalized not in codes:
                codes.append(normalized)
        return codes


class TeacherAssignment(BaseModel):
    teacherId: str
