"""Student directory mirror (owned by the roster system, read-only here)."""

from enum import StrEnum

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import BaseModel


class StudentStatus(StrEnum):
    """Student status enumeration."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class Student(BaseModel):
    """Student enrolled in the school."""

    __tablename__ = "students"

    admission_number: Mapped[str | None] = mapped_column(
        String(50), nullable=True, unique=True, index=True
    )
    full_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    class_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StudentStatus.ACTIVE.value, index=True
    )

    @property
    def is_active(self) -> bool:
        return self.status == StudentStatus.ACTIVE.value
