"""
SQLAlchemy tables of the cache, plus engine creation.

Entity tables carry a boolean `done` column; join tables have composite
primary keys so inserting an existing association is a no-op.
"""

import logging
from pathlib import Path

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    SmallInteger,
    Text,
    UniqueConstraint,
)
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import declarative_base

log = logging.getLogger(__name__)

Base = declarative_base()


class ModuleRow(Base):
    __tablename__ = "modules_unfinished"

    tucan_id = Column(LargeBinary, primary_key=True)
    tucan_last_checked = Column(DateTime, nullable=False)
    title = Column(Text, nullable=False)
    module_id = Column(Text, nullable=False)
    credits = Column(Integer, nullable=True)
    content = Column(Text, nullable=False)
    done = Column(Boolean, nullable=False, default=False)


class CourseRow(Base):
    __tablename__ = "courses_unfinished"

    tucan_id = Column(LargeBinary, primary_key=True)
    tucan_last_checked = Column(DateTime, nullable=False)
    title = Column(Text, nullable=False)
    course_id = Column(Text, nullable=False)
    sws = Column(SmallInteger, nullable=False)
    content = Column(Text, nullable=False)
    done = Column(Boolean, nullable=False, default=False)


class ModuleCourseRow(Base):
    __tablename__ = "module_courses"

    module = Column(LargeBinary, ForeignKey("modules_unfinished.tucan_id"), primary_key=True)
    course = Column(LargeBinary, ForeignKey("courses_unfinished.tucan_id"), primary_key=True)


class CourseGroupRow(Base):
    __tablename__ = "course_groups_unfinished"

    tucan_id = Column(LargeBinary, primary_key=True)
    course = Column(LargeBinary, ForeignKey("courses_unfinished.tucan_id"), nullable=True)
    title = Column(Text, nullable=False)
    done = Column(Boolean, nullable=False, default=False)


class CourseEventRow(Base):
    __tablename__ = "course_events"
    __table_args__ = (UniqueConstraint("course", "timestamp_start", "timestamp_end", "room"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    course = Column(LargeBinary, ForeignKey("courses_unfinished.tucan_id"), nullable=False)
    timestamp_start = Column(DateTime, nullable=False)
    timestamp_end = Column(DateTime, nullable=False)
    room = Column(Text, nullable=False)
    teachers = Column(Text, nullable=False)


class CourseGroupEventRow(Base):
    __tablename__ = "course_groups_events"
    __table_args__ = (UniqueConstraint("course_group", "timestamp_start", "timestamp_end", "room"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    course_group = Column(LargeBinary, ForeignKey("course_groups_unfinished.tucan_id"), nullable=False)
    timestamp_start = Column(DateTime, nullable=False)
    timestamp_end = Column(DateTime, nullable=False)
    room = Column(Text, nullable=False)
    teachers = Column(Text, nullable=False)


class ExamRow(Base):
    __tablename__ = "exams_unfinished"

    tucan_id = Column(LargeBinary, primary_key=True)
    exam_type = Column(Text, nullable=False)
    semester = Column(Text, nullable=False)
    exam_time_start = Column(DateTime, nullable=True)
    exam_time_end = Column(DateTime, nullable=True)
    registration_start = Column(DateTime, nullable=True)
    registration_end = Column(DateTime, nullable=True)
    unregistration_start = Column(DateTime, nullable=True)
    unregistration_end = Column(DateTime, nullable=True)
    examinator = Column(Text, nullable=True)
    room = Column(Text, nullable=True)
    done = Column(Boolean, nullable=False, default=False)


class ModuleExamRow(Base):
    __tablename__ = "module_exams"

    module_id = Column(LargeBinary, ForeignKey("modules_unfinished.tucan_id"), primary_key=True)
    exam = Column(LargeBinary, ForeignKey("exams_unfinished.tucan_id"), primary_key=True)


class CourseExamRow(Base):
    __tablename__ = "course_exams"

    course_id = Column(LargeBinary, ForeignKey("courses_unfinished.tucan_id"), primary_key=True)
    exam = Column(LargeBinary, ForeignKey("exams_unfinished.tucan_id"), primary_key=True)


class ModuleMenuRow(Base):
    __tablename__ = "module_menu_unfinished"

    tucan_id = Column(LargeBinary, primary_key=True)
    tucan_last_checked = Column(DateTime, nullable=False)
    name = Column(Text, nullable=False)
    normalized_name = Column(Text, nullable=False)
    child_type = Column(SmallInteger, nullable=False, default=0)
    done = Column(Boolean, nullable=False, default=False)
    parent = Column(LargeBinary, ForeignKey("module_menu_unfinished.tucan_id"), nullable=True)


class ModuleMenuModuleRow(Base):
    __tablename__ = "module_menu_module"

    module_menu_id = Column(LargeBinary, ForeignKey("module_menu_unfinished.tucan_id"), primary_key=True)
    module_id = Column(LargeBinary, ForeignKey("modules_unfinished.tucan_id"), primary_key=True)


class UserRow(Base):
    __tablename__ = "users_unfinished"

    tu_id = Column(Text, primary_key=True)
    title = Column(Text, nullable=False, default="")
    academic_title = Column(Text, nullable=False, default="")
    first_name = Column(Text, nullable=False, default="")
    last_name = Column(Text, nullable=False, default="")
    email = Column(Text, nullable=False, default="")
    street = Column(Text, nullable=False, default="")
    plz = Column(Text, nullable=False, default="")
    city = Column(Text, nullable=False, default="")
    done = Column(Boolean, nullable=False, default=False)
    user_modules_last_checked = Column(DateTime, nullable=True)
    user_courses_last_checked = Column(DateTime, nullable=True)
    user_exams_last_checked = Column(DateTime, nullable=True)


class UserModuleRow(Base):
    __tablename__ = "user_modules"

    user_id = Column(Text, ForeignKey("users_unfinished.tu_id"), primary_key=True)
    module_id = Column(LargeBinary, ForeignKey("modules_unfinished.tucan_id"), primary_key=True)


class UserCourseRow(Base):
    __tablename__ = "user_courses"

    user_id = Column(Text, ForeignKey("users_unfinished.tu_id"), primary_key=True)
    course_id = Column(LargeBinary, ForeignKey("courses_unfinished.tucan_id"), primary_key=True)


class UserCourseGroupRow(Base):
    __tablename__ = "user_course_groups"

    user_id = Column(Text, ForeignKey("users_unfinished.tu_id"), primary_key=True)
    course_group_id = Column(LargeBinary, ForeignKey("course_groups_unfinished.tucan_id"), primary_key=True)


class UserExamRow(Base):
    __tablename__ = "user_exams"

    user_id = Column(Text, ForeignKey("users_unfinished.tu_id"), primary_key=True)
    exam = Column(LargeBinary, ForeignKey("exams_unfinished.tucan_id"), primary_key=True)


class UserStudyRow(Base):
    """Root registration menu of a user."""

    __tablename__ = "users_studies"

    user_id = Column(Text, ForeignKey("users_unfinished.tu_id"), primary_key=True)
    study = Column(LargeBinary, ForeignKey("module_menu_unfinished.tucan_id"), primary_key=True)


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine. For file based SQLite urls the parent directory
    is created first.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        path = Path(url.database).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        url = url.set(database=str(path))
    return create_async_engine(url, echo=echo)


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info("Database initialized: %s", engine.url.render_as_string(hide_password=True))
