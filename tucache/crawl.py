"""
Crawl orchestration: cache first, portal second.

Every resolve_* operation of the Crawler walks the same states for its entity:

    cached?  -- yes -->  return the cached record
      | no
    fetch page -> extract -> persist in one transaction -> re-read the cache

SessionExpired and ExtractionError end the operation as raised; nothing of
the failing entity is written. Listings fan out concurrently over their
children; the first child error cancels the siblings and the listing itself is
not recorded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple, TypeVar

from tucache import parse
from tucache.model import (
    Course,
    CourseDetails,
    CourseGroupDetails,
    CourseOrGroup,
    ExamDetails,
    Module,
    ModuleDetails,
    MyCourses,
    MyExams,
    RegistrationDetails,
    Session,
    User,
)
from tucache.scrape import Document, Fetcher
from tucache.storage import CacheStore
from tucache.url import Program, ProgramKind

log = logging.getLogger(__name__)

T = TypeVar("T")


async def gather_all(aws: Iterable[Awaitable[T]]) -> List[T]:
    """
    Run all awaitables concurrently and return their results in order.

    On the first failure the still running ones are cancelled and the error is
    re-raised. Cancelling the caller cancels all of them.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in tasks:
            if task in done and task.exception() is not None:
                raise task.exception()
        return [task.result() for task in tasks]
    finally:
        unfinished = [task for task in tasks if not task.done()]
        for task in unfinished:
            task.cancel()
        if unfinished:
            await asyncio.gather(*unfinished, return_exceptions=True)


class Crawler:
    """Resolves portal entities for one logged-in user."""

    def __init__(self, fetcher: Fetcher, store: CacheStore, session: Session) -> None:
        self.fetcher = fetcher
        self.store = store
        self.session = session

    async def _fetch(self, kind: ProgramKind, identifier: bytes = b"") -> Document:
        return await self.fetcher.fetch(Program(kind, identifier), self.session)

    async def _resolve(
        self,
        label: str,
        kind: ProgramKind,
        entity_id: bytes,
        read: Callable[[bytes], Awaitable[Optional[T]]],
        extract: Callable[[Document, bytes], tuple],
        persist: Callable[..., Awaitable[None]],
    ) -> T:
        cached = await read(entity_id)
        if cached is not None:
            log.debug("[~] %s %s", label, entity_id.hex())
            return cached

        doc = await self._fetch(kind, entity_id)
        await persist(*extract(doc, entity_id))
        log.debug("[+] %s %s", label, entity_id.hex())
        return await self._reread(label, entity_id, read)

    @staticmethod
    async def _reread(label: str, entity_id: bytes, read: Callable[[bytes], Awaitable[Optional[T]]]) -> T:
        result = await read(entity_id)
        if result is None:
            raise RuntimeError(f"{label} {entity_id.hex()} missing from the cache after it was stored")
        return result

    # -- single entities ------------------------------------------------------

    async def resolve_module(self, module_id: bytes) -> ModuleDetails:
        return await self._resolve(
            "module",
            ProgramKind.MODULE_DETAILS,
            module_id,
            self.store.get_module,
            parse.extract_module,
            self.store.complete_module,
        )

    async def resolve_course(self, course_id: bytes) -> CourseOrGroup:
        """
        Courses and course groups share one address space. Both caches are
        checked; on a miss the page is fetched once and the extractor is picked
        by the course group marker.
        """
        course = await self.store.get_course(course_id)
        if course is not None:
            log.debug("[~] course %s", course_id.hex())
            return course
        group = await self.store.get_course_group(course_id)
        if group is not None:
            log.debug("[~] course group %s", course_id.hex())
            return group

        doc = await self._fetch(ProgramKind.COURSE_DETAILS, course_id)
        if parse.is_course_group(doc):
            await self.store.complete_course_group(*parse.extract_course_group(doc, course_id))
            log.debug("[+] course group %s", course_id.hex())
            return await self._reread("course group", course_id, self.store.get_course_group)

        await self.store.complete_course(*parse.extract_course(doc, course_id))
        log.debug("[+] course %s", course_id.hex())
        return await self._reread("course", course_id, self.store.get_course)

    async def resolve_exam_details(self, exam_id: bytes) -> ExamDetails:
        return await self._resolve(
            "exam",
            ProgramKind.EXAM_DETAILS,
            exam_id,
            self.store.get_exam,
            parse.extract_exam,
            self.store.complete_exam,
        )

    async def _persist_menu(self, menu, children: parse.MenuChildren) -> None:
        await self.store.complete_module_menu(menu, children.submenus, children.modules)

    async def resolve_registration(self, menu_id: Optional[bytes] = None) -> RegistrationDetails:
        """
        One level of the registration tree. Without an id the user's root menu
        is resolved; its id is remembered per user.
        """
        if menu_id is None:
            menu_id = await self.store.get_user_study(self.session.tu_id)
        if menu_id is None:
            return await self._resolve_root_registration()

        return await self._resolve(
            "registration",
            ProgramKind.REGISTRATION,
            menu_id,
            self.store.get_module_menu,
            parse.extract_module_menu,
            self._persist_menu,
        )

    async def _resolve_root_registration(self) -> RegistrationDetails:
        # the root page already shows the root menu, so it is extracted as is
        doc = await self._fetch(ProgramKind.ROOT_REGISTRATION)
        menu_id = parse.extract_root_registration(doc)

        if await self.store.get_module_menu(menu_id) is None:
            await self._persist_menu(*parse.extract_module_menu(doc, menu_id))
            log.debug("[+] registration %s", menu_id.hex())
        await self.store.save_user_study(self.session.tu_id, menu_id)
        return await self._reread("registration", menu_id, self.store.get_module_menu)

    # -- listings of the user -------------------------------------------------

    async def resolve_my_modules(self) -> List[Module]:
        tu_id = self.session.tu_id
        cached = await self.store.get_my_modules(tu_id)
        if cached is not None:
            log.debug("[~] my modules of %s", tu_id)
            return cached

        doc = await self._fetch(ProgramKind.MY_MODULES)
        module_ids = parse.extract_listing(doc, ProgramKind.MODULE_DETAILS)
        await gather_all(self.resolve_module(module_id) for module_id in module_ids)

        await self.store.save_my_modules(tu_id, module_ids)
        log.debug("[+] my modules of %s (%d)", tu_id, len(module_ids))
        return await self._reread_listing("my modules", self.store.get_my_modules)

    async def resolve_my_courses(self) -> MyCourses:
        tu_id = self.session.tu_id
        cached = await self.store.get_my_courses(tu_id)
        if cached is not None:
            log.debug("[~] my courses of %s", tu_id)
            return cached

        doc = await self._fetch(ProgramKind.MY_COURSES)
        ids = parse.extract_listing(doc, ProgramKind.COURSE_DETAILS)
        resolved = await gather_all(self.resolve_course(course_id) for course_id in ids)

        course_ids = [r.course.tucan_id for r in resolved if isinstance(r, CourseDetails)]
        group_ids = [r.course_group.tucan_id for r in resolved if isinstance(r, CourseGroupDetails)]
        await self.store.save_my_courses(tu_id, course_ids, group_ids)
        log.debug("[+] my courses of %s (%d courses, %d groups)", tu_id, len(course_ids), len(group_ids))
        return await self._reread_listing("my courses", self.store.get_my_courses)

    async def resolve_my_exams(self) -> MyExams:
        tu_id = self.session.tu_id
        cached = await self.store.get_my_exams(tu_id)
        if cached is not None:
            log.debug("[~] my exams of %s", tu_id)
            return cached

        doc = await self._fetch(ProgramKind.MY_EXAMS)
        rows = parse.extract_my_exams(doc)
        await gather_all(self.resolve_exam_details(exam_id) for exam_id, _owner, _text in rows)

        modules: List[Tuple[Module, bytes]] = []
        courses: List[Tuple[Course, bytes]] = []
        for exam_id, owner, text in rows:
            code, title = parse.split_code_title(text)
            if owner.kind is ProgramKind.MODULE_DETAILS:
                modules.append((Module.stub(owner.identifier, title, code), exam_id))
            else:
                courses.append((Course.stub(owner.identifier, title, code), exam_id))

        await self.store.save_my_exams(tu_id, modules, courses)
        log.debug("[+] my exams of %s (%d)", tu_id, len(rows))
        return await self._reread_listing("my exams", self.store.get_my_exams)

    async def _reread_listing(self, label: str, read: Callable[[str], Awaitable[Optional[T]]]) -> T:
        result = await read(self.session.tu_id)
        if result is None:
            raise RuntimeError(f"{label} of {self.session.tu_id} missing from the cache after it was stored")
        return result

    async def resolve_personal_data(self) -> User:
        tu_id = self.session.tu_id
        cached = await self.store.get_user(tu_id)
        if cached is not None:
            log.debug("[~] personal data of %s", tu_id)
            return cached

        doc = await self._fetch(ProgramKind.PERSONAL_ADDRESS)
        await self.store.complete_user(parse.extract_personal_data(doc, tu_id))
        log.debug("[+] personal data of %s", tu_id)
        return await self._reread_listing("personal data", self.store.get_user)
