# routes/students.py
from fastapi import APIRouter, Depends

from database import get_db
from services import enrollment
from .auth import require_role

router = APIRouter(prefix="/api/students", tags=["students"])


@router.post("/courses/{course_id}/enroll")
async def enroll_course(course_id: str, db=Depends(get_db), current_user: dict = Depends(require_role("student"))):
    course = await enrollment.enroll_self(db, current_user["id"], course_id)
    return {"message": "Successfully enrolled in course", "course": course}
