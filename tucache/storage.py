"""
Cache store: transactional reads and writes over the tables in tucache.db.

Write rules shared by all entity tables:
- rows are never deleted
- `done` only ever goes from False to True  (existing.done OR incoming.done)
- stubs are inserted only if the row is absent, so they never downgrade a record
- parent / owner references are set once: COALESCE(existing, incoming)
- a menu's child type is fixed once it is no longer UNKNOWN

Reads return None unless the primary row is done.

Each `complete_*` / `save_*` method is one transaction: readers never see a
done record whose children are missing.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tucache.db import (
    CourseEventRow,
    CourseExamRow,
    CourseGroupEventRow,
    CourseGroupRow,
    CourseRow,
    ExamRow,
    ModuleCourseRow,
    ModuleExamRow,
    ModuleMenuModuleRow,
    ModuleMenuRow,
    ModuleRow,
    UserCourseGroupRow,
    UserCourseRow,
    UserExamRow,
    UserModuleRow,
    UserRow,
    UserStudyRow,
)
from tucache.model import (
    ChildType,
    Course,
    CourseDetails,
    CourseEvent,
    CourseGroup,
    CourseGroupDetails,
    CourseGroupEvent,
    Exam,
    ExamDetails,
    Module,
    ModuleDetails,
    ModuleMenu,
    MyCourses,
    MyExams,
    RegistrationDetails,
    User,
    utcnow,
)

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row <-> record conversion
# ---------------------------------------------------------------------------


def _module(row: ModuleRow) -> Module:
    return Module(row.tucan_id, row.tucan_last_checked, row.title, row.module_id, row.credits, row.content, row.done)


def _course(row: CourseRow) -> Course:
    return Course(row.tucan_id, row.tucan_last_checked, row.title, row.course_id, row.sws, row.content, row.done)


def _course_group(row: CourseGroupRow) -> CourseGroup:
    return CourseGroup(row.tucan_id, row.course, row.title, row.done)


def _exam(row: ExamRow) -> Exam:
    return Exam(
        tucan_id=row.tucan_id,
        exam_type=row.exam_type,
        semester=row.semester,
        exam_time_start=row.exam_time_start,
        exam_time_end=row.exam_time_end,
        registration_start=row.registration_start,
        registration_end=row.registration_end,
        unregistration_start=row.unregistration_start,
        unregistration_end=row.unregistration_end,
        examinator=row.examinator,
        room=row.room,
        done=row.done,
    )


def _menu(row: ModuleMenuRow) -> ModuleMenu:
    return ModuleMenu(
        tucan_id=row.tucan_id,
        tucan_last_checked=row.tucan_last_checked,
        name=row.name,
        normalized_name=row.normalized_name,
        child_type=ChildType(row.child_type),
        done=row.done,
        parent=row.parent,
    )


def _user(row: UserRow) -> User:
    return User(
        tu_id=row.tu_id,
        title=row.title,
        academic_title=row.academic_title,
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email,
        street=row.street,
        plz=row.plz,
        city=row.city,
        done=row.done,
    )


def _module_values(m: Module) -> dict:
    return {
        "tucan_id": m.tucan_id,
        "tucan_last_checked": m.tucan_last_checked,
        "title": m.title,
        "module_id": m.module_id,
        "credits": m.credits,
        "content": m.content,
        "done": m.done,
    }


def _course_values(c: Course) -> dict:
    return {
        "tucan_id": c.tucan_id,
        "tucan_last_checked": c.tucan_last_checked,
        "title": c.title,
        "course_id": c.course_id,
        "sws": c.sws,
        "content": c.content,
        "done": c.done,
    }


def _menu_values(m: ModuleMenu) -> dict:
    return {
        "tucan_id": m.tucan_id,
        "tucan_last_checked": m.tucan_last_checked,
        "name": m.name,
        "normalized_name": m.normalized_name,
        "child_type": int(m.child_type),
        "done": m.done,
        "parent": m.parent,
    }


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class CacheStore:
    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)
        self._insert = postgresql.insert if engine.dialect.name == "postgresql" else sqlite.insert

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """One transaction. Commits on success, rolls back on error."""
        session = self._sessions()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # -- row primitives (call inside a transaction) --------------------------

    async def upsert_module(self, s: AsyncSession, module: Module) -> None:
        t = ModuleRow.__table__
        stmt = self._insert(t).values(_module_values(module))
        stmt = stmt.on_conflict_do_update(
            index_elements=["tucan_id"],
            set_={
                "tucan_last_checked": stmt.excluded.tucan_last_checked,
                "title": stmt.excluded.title,
                "module_id": stmt.excluded.module_id,
                "credits": stmt.excluded.credits,
                "content": stmt.excluded.content,
                "done": or_(t.c.done, stmt.excluded.done),
            },
        )
        await s.execute(stmt)

    async def insert_module_stubs(self, s: AsyncSession, modules: Sequence[Module]) -> None:
        if modules:
            stmt = self._insert(ModuleRow.__table__).values([_module_values(m) for m in modules])
            await s.execute(stmt.on_conflict_do_nothing())

    async def upsert_course(self, s: AsyncSession, course: Course) -> None:
        t = CourseRow.__table__
        stmt = self._insert(t).values(_course_values(course))
        stmt = stmt.on_conflict_do_update(
            index_elements=["tucan_id"],
            set_={
                "tucan_last_checked": stmt.excluded.tucan_last_checked,
                "title": stmt.excluded.title,
                "course_id": stmt.excluded.course_id,
                "sws": stmt.excluded.sws,
                "content": stmt.excluded.content,
                "done": or_(t.c.done, stmt.excluded.done),
            },
        )
        await s.execute(stmt)

    async def insert_course_stubs(self, s: AsyncSession, courses: Sequence[Course]) -> None:
        if courses:
            stmt = self._insert(CourseRow.__table__).values([_course_values(c) for c in courses])
            await s.execute(stmt.on_conflict_do_nothing())

    async def upsert_course_group(self, s: AsyncSession, group: CourseGroup) -> None:
        t = CourseGroupRow.__table__
        stmt = self._insert(t).values(tucan_id=group.tucan_id, course=group.course, title=group.title, done=group.done)
        stmt = stmt.on_conflict_do_update(
            index_elements=["tucan_id"],
            set_={
                "course": func.coalesce(t.c.course, stmt.excluded.course),
                "title": stmt.excluded.title,
                "done": or_(t.c.done, stmt.excluded.done),
            },
        )
        await s.execute(stmt)

    async def insert_course_group_stubs(self, s: AsyncSession, groups: Sequence[CourseGroup]) -> None:
        """Insert-if-absent; an existing group only gains its owning course if it had none."""
        if not groups:
            return
        t = CourseGroupRow.__table__
        stmt = self._insert(t).values(
            [{"tucan_id": g.tucan_id, "course": g.course, "title": g.title, "done": g.done} for g in groups]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["tucan_id"],
            set_={"course": func.coalesce(t.c.course, stmt.excluded.course)},
        )
        await s.execute(stmt)

    async def upsert_course_events(self, s: AsyncSession, events: Sequence[CourseEvent]) -> None:
        if not events:
            return
        stmt = self._insert(CourseEventRow.__table__).values(
            [
                {
                    "course": e.course,
                    "timestamp_start": e.timestamp_start,
                    "timestamp_end": e.timestamp_end,
                    "room": e.room,
                    "teachers": e.teachers,
                }
                for e in events
            ]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["course", "timestamp_start", "timestamp_end", "room"],
            set_={"teachers": stmt.excluded.teachers},
        )
        await s.execute(stmt)

    async def upsert_course_group_events(self, s: AsyncSession, events: Sequence[CourseGroupEvent]) -> None:
        if not events:
            return
        stmt = self._insert(CourseGroupEventRow.__table__).values(
            [
                {
                    "course_group": e.course_group,
                    "timestamp_start": e.timestamp_start,
                    "timestamp_end": e.timestamp_end,
                    "room": e.room,
                    "teachers": e.teachers,
                }
                for e in events
            ]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["course_group", "timestamp_start", "timestamp_end", "room"],
            set_={"teachers": stmt.excluded.teachers},
        )
        await s.execute(stmt)

    async def upsert_exam(self, s: AsyncSession, exam: Exam) -> None:
        t = ExamRow.__table__
        values = {
            "tucan_id": exam.tucan_id,
            "exam_type": exam.exam_type,
            "semester": exam.semester,
            "exam_time_start": exam.exam_time_start,
            "exam_time_end": exam.exam_time_end,
            "registration_start": exam.registration_start,
            "registration_end": exam.registration_end,
            "unregistration_start": exam.unregistration_start,
            "unregistration_end": exam.unregistration_end,
            "examinator": exam.examinator,
            "room": exam.room,
            "done": exam.done,
        }
        stmt = self._insert(t).values(values)
        updates = {k: stmt.excluded[k] for k in values if k not in ("tucan_id", "done")}
        updates["done"] = or_(t.c.done, stmt.excluded.done)
        await s.execute(stmt.on_conflict_do_update(index_elements=["tucan_id"], set_=updates))

    async def upsert_module_menu(self, s: AsyncSession, menu: ModuleMenu) -> None:
        t = ModuleMenuRow.__table__
        stmt = self._insert(t).values(_menu_values(menu))
        stmt = stmt.on_conflict_do_update(
            index_elements=["tucan_id"],
            set_={
                "tucan_last_checked": stmt.excluded.tucan_last_checked,
                "name": stmt.excluded.name,
                "normalized_name": stmt.excluded.normalized_name,
                "child_type": case(
                    (t.c.child_type == int(ChildType.UNKNOWN), stmt.excluded.child_type),
                    else_=t.c.child_type,
                ),
                "done": or_(t.c.done, stmt.excluded.done),
                "parent": func.coalesce(t.c.parent, stmt.excluded.parent),
            },
        )
        await s.execute(stmt)

    async def insert_module_menu_stubs(self, s: AsyncSession, menus: Sequence[ModuleMenu]) -> None:
        """Insert-if-absent; an existing node only gains a parent if it had none."""
        if not menus:
            return
        t = ModuleMenuRow.__table__
        stmt = self._insert(t).values([_menu_values(m) for m in menus])
        stmt = stmt.on_conflict_do_update(
            index_elements=["tucan_id"],
            set_={"parent": func.coalesce(t.c.parent, stmt.excluded.parent)},
        )
        await s.execute(stmt)

    async def _link(self, s: AsyncSession, row_class, rows: List[dict]) -> None:
        if rows:
            await s.execute(self._insert(row_class.__table__).values(rows).on_conflict_do_nothing())

    async def ensure_user(self, s: AsyncSession, tu_id: str) -> None:
        await s.execute(self._insert(UserRow.__table__).values(tu_id=tu_id, done=False).on_conflict_do_nothing())

    # -- logical writes, one transaction each --------------------------------

    async def complete_module(self, module: Module, courses: Sequence[Course]) -> None:
        async with self.transaction() as s:
            await self.upsert_module(s, module)
            await self.insert_course_stubs(s, courses)
            await self._link(s, ModuleCourseRow, [{"module": module.tucan_id, "course": c.tucan_id} for c in courses])

    async def complete_course(
        self, course: Course, groups: Sequence[CourseGroup], events: Sequence[CourseEvent]
    ) -> None:
        async with self.transaction() as s:
            await self.upsert_course(s, course)
            await self.insert_course_group_stubs(s, groups)
            await self.upsert_course_events(s, events)

    async def complete_course_group(self, group: CourseGroup, events: Sequence[CourseGroupEvent]) -> None:
        async with self.transaction() as s:
            if group.course is not None:
                await self.insert_course_stubs(s, [Course.stub(group.course)])
            await self.upsert_course_group(s, group)
            await self.upsert_course_group_events(s, events)

    async def complete_exam(self, exam: Exam, modules: Sequence[Module], courses: Sequence[Course]) -> None:
        async with self.transaction() as s:
            await self.upsert_exam(s, exam)
            await self.insert_module_stubs(s, modules)
            await self.insert_course_stubs(s, courses)
            await self._link(s, ModuleExamRow, [{"module_id": m.tucan_id, "exam": exam.tucan_id} for m in modules])
            await self._link(s, CourseExamRow, [{"course_id": c.tucan_id, "exam": exam.tucan_id} for c in courses])

    async def complete_module_menu(
        self,
        menu: ModuleMenu,
        submenus: Sequence[ModuleMenu] = (),
        modules: Sequence[Tuple[Module, Sequence[Course]]] = (),
    ) -> None:
        async with self.transaction() as s:
            await self.upsert_module_menu(s, menu)
            await self.insert_module_menu_stubs(s, submenus)

            await self.insert_module_stubs(s, [m for m, _ in modules])
            await self._link(
                s, ModuleMenuModuleRow, [{"module_menu_id": menu.tucan_id, "module_id": m.tucan_id} for m, _ in modules]
            )
            for module, courses in modules:
                await self.insert_course_stubs(s, courses)
                await self._link(
                    s, ModuleCourseRow, [{"module": module.tucan_id, "course": c.tucan_id} for c in courses]
                )

    async def complete_user(self, user: User) -> None:
        t = UserRow.__table__
        fields = ("title", "academic_title", "first_name", "last_name", "email", "street", "plz", "city")
        async with self.transaction() as s:
            stmt = self._insert(t).values(tu_id=user.tu_id, done=user.done, **{f: getattr(user, f) for f in fields})
            updates = {f: stmt.excluded[f] for f in fields}
            updates["done"] = or_(t.c.done, stmt.excluded.done)
            await s.execute(stmt.on_conflict_do_update(index_elements=["tu_id"], set_=updates))

    async def save_user_study(self, tu_id: str, menu_id: bytes) -> None:
        async with self.transaction() as s:
            await self.ensure_user(s, tu_id)
            await self.insert_module_menu_stubs(s, [ModuleMenu.stub(menu_id, "", "", parent=None)])
            await self._link(s, UserStudyRow, [{"user_id": tu_id, "study": menu_id}])

    async def _touch_user(self, s: AsyncSession, tu_id: str, column: str) -> None:
        await s.execute(update(UserRow).where(UserRow.tu_id == tu_id).values({column: utcnow()}))

    async def save_my_modules(self, tu_id: str, module_ids: Iterable[bytes]) -> None:
        async with self.transaction() as s:
            await self.ensure_user(s, tu_id)
            await self._link(s, UserModuleRow, [{"user_id": tu_id, "module_id": m} for m in module_ids])
            await self._touch_user(s, tu_id, "user_modules_last_checked")

    async def save_my_courses(self, tu_id: str, course_ids: Iterable[bytes], group_ids: Iterable[bytes]) -> None:
        async with self.transaction() as s:
            await self.ensure_user(s, tu_id)
            await self._link(s, UserCourseRow, [{"user_id": tu_id, "course_id": c} for c in course_ids])
            await self._link(s, UserCourseGroupRow, [{"user_id": tu_id, "course_group_id": g} for g in group_ids])
            await self._touch_user(s, tu_id, "user_courses_last_checked")

    async def save_my_exams(
        self,
        tu_id: str,
        modules: Sequence[Tuple[Module, bytes]],
        courses: Sequence[Tuple[Course, bytes]],
    ) -> None:
        """
        Registers the user's exams as (owner, exam id) pairs. The exams must
        already be stored; owners missing from the cache are inserted as stubs.
        """
        async with self.transaction() as s:
            await self.ensure_user(s, tu_id)
            await self.insert_module_stubs(s, [m for m, _ in modules])
            await self.insert_course_stubs(s, [c for c, _ in courses])
            await self._link(s, ModuleExamRow, [{"module_id": m.tucan_id, "exam": e} for m, e in modules])
            await self._link(s, CourseExamRow, [{"course_id": c.tucan_id, "exam": e} for c, e in courses])
            exam_ids = {e for _, e in modules} | {e for _, e in courses}
            await self._link(s, UserExamRow, [{"user_id": tu_id, "exam": e} for e in sorted(exam_ids)])
            await self._touch_user(s, tu_id, "user_exams_last_checked")

    # -- reads ----------------------------------------------------------------

    async def get_module(self, module_id: bytes) -> Optional[ModuleDetails]:
        async with self._sessions() as s:
            row = (
                await s.execute(select(ModuleRow).where(ModuleRow.tucan_id == module_id, ModuleRow.done))
            ).scalar_one_or_none()
            if row is None:
                return None
            courses = (
                await s.execute(
                    select(CourseRow)
                    .join(ModuleCourseRow, ModuleCourseRow.course == CourseRow.tucan_id)
                    .where(ModuleCourseRow.module == module_id)
                    .order_by(CourseRow.tucan_id)
                )
            ).scalars()
            return ModuleDetails(_module(row), [_course(c) for c in courses])

    async def get_course(self, course_id: bytes) -> Optional[CourseDetails]:
        async with self._sessions() as s:
            row = (
                await s.execute(select(CourseRow).where(CourseRow.tucan_id == course_id, CourseRow.done))
            ).scalar_one_or_none()
            if row is None:
                return None
            groups = (
                await s.execute(
                    select(CourseGroupRow).where(CourseGroupRow.course == course_id).order_by(CourseGroupRow.tucan_id)
                )
            ).scalars()
            events = (
                await s.execute(
                    select(CourseEventRow)
                    .where(CourseEventRow.course == course_id)
                    .order_by(CourseEventRow.timestamp_start, CourseEventRow.room)
                )
            ).scalars()
            return CourseDetails(
                _course(row),
                [_course_group(g) for g in groups],
                [CourseEvent(e.course, e.timestamp_start, e.timestamp_end, e.room, e.teachers) for e in events],
            )

    async def get_course_group(self, group_id: bytes) -> Optional[CourseGroupDetails]:
        async with self._sessions() as s:
            row = (
                await s.execute(select(CourseGroupRow).where(CourseGroupRow.tucan_id == group_id, CourseGroupRow.done))
            ).scalar_one_or_none()
            if row is None:
                return None
            events = (
                await s.execute(
                    select(CourseGroupEventRow)
                    .where(CourseGroupEventRow.course_group == group_id)
                    .order_by(CourseGroupEventRow.timestamp_start, CourseGroupEventRow.room)
                )
            ).scalars()
            return CourseGroupDetails(
                _course_group(row),
                [CourseGroupEvent(e.course_group, e.timestamp_start, e.timestamp_end, e.room, e.teachers) for e in events],
            )

    async def get_exam(self, exam_id: bytes) -> Optional[ExamDetails]:
        async with self._sessions() as s:
            row = (
                await s.execute(select(ExamRow).where(ExamRow.tucan_id == exam_id, ExamRow.done))
            ).scalar_one_or_none()
            if row is None:
                return None
            modules = (
                await s.execute(
                    select(ModuleRow)
                    .join(ModuleExamRow, ModuleExamRow.module_id == ModuleRow.tucan_id)
                    .where(ModuleExamRow.exam == exam_id)
                    .order_by(ModuleRow.tucan_id)
                )
            ).scalars()
            courses = (
                await s.execute(
                    select(CourseRow)
                    .join(CourseExamRow, CourseExamRow.course_id == CourseRow.tucan_id)
                    .where(CourseExamRow.exam == exam_id)
                    .order_by(CourseRow.tucan_id)
                )
            ).scalars()
            return ExamDetails(_exam(row), [_module(m) for m in modules], [_course(c) for c in courses])

    async def get_module_menu(self, menu_id: bytes) -> Optional[RegistrationDetails]:
        async with self._sessions() as s:
            row = (
                await s.execute(select(ModuleMenuRow).where(ModuleMenuRow.tucan_id == menu_id, ModuleMenuRow.done))
            ).scalar_one_or_none()
            if row is None:
                return None
            details = RegistrationDetails(_menu(row))
            if details.menu.child_type is ChildType.SUBMENU:
                children = (
                    await s.execute(
                        select(ModuleMenuRow).where(ModuleMenuRow.parent == menu_id).order_by(ModuleMenuRow.tucan_id)
                    )
                ).scalars()
                details.submenus = [_menu(c) for c in children]
            elif details.menu.child_type is ChildType.MODULES:
                modules = (
                    await s.execute(
                        select(ModuleRow)
                        .join(ModuleMenuModuleRow, ModuleMenuModuleRow.module_id == ModuleRow.tucan_id)
                        .where(ModuleMenuModuleRow.module_menu_id == menu_id)
                        .order_by(ModuleRow.tucan_id)
                    )
                ).scalars()
                details.modules = [_module(m) for m in modules]
            return details

    async def get_user(self, tu_id: str) -> Optional[User]:
        async with self._sessions() as s:
            row = (await s.execute(select(UserRow).where(UserRow.tu_id == tu_id, UserRow.done))).scalar_one_or_none()
            return _user(row) if row is not None else None

    async def get_user_study(self, tu_id: str) -> Optional[bytes]:
        async with self._sessions() as s:
            return (
                await s.execute(select(UserStudyRow.study).where(UserStudyRow.user_id == tu_id).limit(1))
            ).scalar_one_or_none()

    async def _last_checked(self, s: AsyncSession, tu_id: str, column) -> bool:
        value = (await s.execute(select(column).where(UserRow.tu_id == tu_id))).scalar_one_or_none()
        return value is not None

    async def get_my_modules(self, tu_id: str) -> Optional[List[Module]]:
        async with self._sessions() as s:
            if not await self._last_checked(s, tu_id, UserRow.user_modules_last_checked):
                return None
            modules = (
                await s.execute(
                    select(ModuleRow)
                    .join(UserModuleRow, UserModuleRow.module_id == ModuleRow.tucan_id)
                    .where(UserModuleRow.user_id == tu_id)
                    .order_by(ModuleRow.tucan_id)
                )
            ).scalars()
            return [_module(m) for m in modules]

    async def get_my_courses(self, tu_id: str) -> Optional[MyCourses]:
        async with self._sessions() as s:
            if not await self._last_checked(s, tu_id, UserRow.user_courses_last_checked):
                return None
            courses = (
                await s.execute(
                    select(CourseRow)
                    .join(UserCourseRow, UserCourseRow.course_id == CourseRow.tucan_id)
                    .where(UserCourseRow.user_id == tu_id)
                    .order_by(CourseRow.tucan_id)
                )
            ).scalars()
            groups = (
                await s.execute(
                    select(CourseGroupRow)
                    .join(UserCourseGroupRow, UserCourseGroupRow.course_group_id == CourseGroupRow.tucan_id)
                    .where(UserCourseGroupRow.user_id == tu_id)
                    .order_by(CourseGroupRow.tucan_id)
                )
            ).scalars()
            return MyCourses([_course(c) for c in courses], [_course_group(g) for g in groups])

    async def get_my_exams(self, tu_id: str) -> Optional[MyExams]:
        async with self._sessions() as s:
            if not await self._last_checked(s, tu_id, UserRow.user_exams_last_checked):
                return None
            module_pairs = (
                await s.execute(
                    select(ModuleRow, ExamRow)
                    .join(ModuleExamRow, ModuleExamRow.module_id == ModuleRow.tucan_id)
                    .join(ExamRow, ExamRow.tucan_id == ModuleExamRow.exam)
                    .join(UserExamRow, UserExamRow.exam == ExamRow.tucan_id)
                    .where(UserExamRow.user_id == tu_id)
                    .order_by(ExamRow.tucan_id, ModuleRow.tucan_id)
                )
            ).all()
            course_pairs = (
                await s.execute(
                    select(CourseRow, ExamRow)
                    .join(CourseExamRow, CourseExamRow.course_id == CourseRow.tucan_id)
                    .join(ExamRow, ExamRow.tucan_id == CourseExamRow.exam)
                    .join(UserExamRow, UserExamRow.exam == ExamRow.tucan_id)
                    .where(UserExamRow.user_id == tu_id)
                    .order_by(ExamRow.tucan_id, CourseRow.tucan_id)
                )
            ).all()
            return MyExams(
                [(_module(m), _exam(e)) for m, e in module_pairs],
                [(_course(c), _exam(e)) for c, e in course_pairs],
            )
