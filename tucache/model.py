"""
Central data model definitions used across the project.

Records mirror the rows of the cache tables. Every entity record carries `done`:
- done=False  a stub, created as a forward reference while extracting another page
- done=True   the record reflects a completed fetch + extract pass of its own page

Stubs are built with the `stub()` constructors; complete records come out of the
extractors in tucache.parse.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import List, Optional, Tuple, Union


def utcnow() -> datetime:
    """Naive UTC timestamp, the format stored in all timestamp columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class Session:
    """Credential of one logged-in portal user (established outside this package)."""

    tu_id: str
    session_nr: int
    session_id: str


class ChildType(IntEnum):
    UNKNOWN = 0
    SUBMENU = 1
    MODULES = 2


@dataclass
class Module:
    tucan_id: bytes
    tucan_last_checked: datetime
    title: str
    module_id: str
    credits: Optional[int]
    content: str
    done: bool

    @classmethod
    def stub(cls, tucan_id: bytes, title: str = "", module_id: str = "") -> "Module":
        return cls(tucan_id, utcnow(), title, module_id, None, "", False)


@dataclass
class Course:
    tucan_id: bytes
    tucan_last_checked: datetime
    title: str
    course_id: str
    sws: int
    content: str
    done: bool

    @classmethod
    def stub(cls, tucan_id: bytes, title: str = "", course_id: str = "") -> "Course":
        return cls(tucan_id, utcnow(), title, course_id, 0, "", False)


@dataclass
class CourseGroup:
    tucan_id: bytes
    course: Optional[bytes]
    title: str
    done: bool

    @classmethod
    def stub(cls, tucan_id: bytes, course: Optional[bytes], title: str = "") -> "CourseGroup":
        return cls(tucan_id, course, title, False)


@dataclass
class CourseEvent:
    """One schedule entry of a course. Unique on (course, start, end, room)."""

    course: bytes
    timestamp_start: datetime
    timestamp_end: datetime
    room: str
    teachers: str


@dataclass
class CourseGroupEvent:
    course_group: bytes
    timestamp_start: datetime
    timestamp_end: datetime
    room: str
    teachers: str


@dataclass
class Exam:
    tucan_id: bytes
    exam_type: str
    semester: str
    exam_time_start: Optional[datetime]
    exam_time_end: Optional[datetime]
    registration_start: Optional[datetime]
    registration_end: Optional[datetime]
    unregistration_start: Optional[datetime]
    unregistration_end: Optional[datetime]
    examinator: Optional[str]
    room: Optional[str]
    done: bool


@dataclass
class ModuleMenu:
    tucan_id: bytes
    tucan_last_checked: datetime
    name: str
    normalized_name: str
    child_type: ChildType
    done: bool
    parent: Optional[bytes] = None

    @classmethod
    def stub(cls, tucan_id: bytes, name: str, normalized_name: str, parent: Optional[bytes]) -> "ModuleMenu":
        return cls(tucan_id, utcnow(), name, normalized_name, ChildType.UNKNOWN, False, parent)


@dataclass
class User:
    """Profile from the personal address page, keyed by the portal login (TU-ID)."""

    tu_id: str
    title: str = ""
    academic_title: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    street: str = ""
    plz: str = ""
    city: str = ""
    done: bool = False


# ---------------------------------------------------------------------------
# Views returned by the crawler
# ---------------------------------------------------------------------------


@dataclass
class ModuleDetails:
    module: Module
    courses: List[Course] = field(default_factory=list)


@dataclass
class CourseDetails:
    course: Course
    course_groups: List[CourseGroup] = field(default_factory=list)
    events: List[CourseEvent] = field(default_factory=list)


@dataclass
class CourseGroupDetails:
    course_group: CourseGroup
    events: List[CourseGroupEvent] = field(default_factory=list)


CourseOrGroup = Union[CourseDetails, CourseGroupDetails]


@dataclass
class ExamDetails:
    exam: Exam
    modules: List[Module] = field(default_factory=list)
    courses: List[Course] = field(default_factory=list)


@dataclass
class RegistrationDetails:
    """
    One registration menu level. Exactly one of `submenus` / `modules` is
    meaningful, as told by `menu.child_type`.
    """

    menu: ModuleMenu
    submenus: List[ModuleMenu] = field(default_factory=list)
    modules: List[Module] = field(default_factory=list)


@dataclass
class MyCourses:
    courses: List[Course] = field(default_factory=list)
    course_groups: List[CourseGroup] = field(default_factory=list)


@dataclass
class MyExams:
    modules: List[Tuple[Module, Exam]] = field(default_factory=list)
    courses: List[Tuple[Course, Exam]] = field(default_factory=list)
