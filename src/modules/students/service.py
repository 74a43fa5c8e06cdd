"""Read-only lookups against the student directory."""

from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import NotFoundError
from src.modules.students.models import Student


class StudentDirectory:
    """Lookup of students by id, admission number or exact name."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_student(self, student_id: int) -> Student:
        result = await self.db.execute(select(Student).where(Student.id == student_id))
        student = result.scalar_one_or_none()
        if not student:
            raise NotFoundError("Student", student_id)
        return student

    async def get_students(self, student_ids: Iterable[int]) -> dict[int, Student]:
        """Students keyed by id; unknown ids are simply absent."""
        ids = list(set(student_ids))
        if not ids:
            return {}
        result = await self.db.execute(select(Student).where(Student.id.in_(ids)))
        return {s.id: s for s in result.scalars().all()}

    async def find_by_admission_number(self, admission_number: str) -> Student | None:
        result = await self.db.execute(
            select(Student).where(Student.admission_number == admission_number.strip())
        )
        return result.scalar_one_or_none()

    async def find_by_name(self, name: str) -> list[Student]:
        """All students whose full name matches exactly, ignoring case."""
        result = await self.db.execute(
            select(Student)
            .where(func.lower(Student.full_name) == name.strip().lower())
            .order_by(Student.id)
        )
        return list(result.scalars().all())
