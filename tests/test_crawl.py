"""
Crawler tests: a fake portal behind httpx.MockTransport and a temporary
SQLite cache. Every test counts the requests the portal saw.
"""

import asyncio
import unittest

import httpx
from sqlalchemy import select

from portal_pages import (
    FakePortal,
    TempDatabase,
    course_group_page,
    course_page,
    exam_page,
    listing_page,
    module_leaf_page,
    module_page,
    my_exams_page,
    personal_data_page,
    submenu_page,
    tid,
    timeout_page,
)
from tucache.crawl import Crawler, gather_all
from tucache.db import ModuleRow
from tucache.errors import ExtractionError, SessionExpired
from tucache.model import ChildType, CourseDetails, CourseGroupDetails, Module, Session
from tucache.scrape import Fetcher
from tucache.storage import CacheStore
from tucache.url import ProgramKind

SESSION = Session(tu_id="em12abcd", session_nr=424242, session_id="SID-1")


class CrawlTestCase(unittest.IsolatedAsyncioTestCase):
    max_concurrency = 10
    delay = 0.0

    async def asyncSetUp(self) -> None:
        self.db = TempDatabase()
        await self.db.start()
        self.store = CacheStore(self.db.engine)
        self.portal = FakePortal(delay=self.delay)
        self.client = self.portal.client()
        self.semaphore = asyncio.Semaphore(self.max_concurrency)
        self.crawler = Crawler(Fetcher(self.client, self.semaphore), self.store, SESSION)

    async def asyncTearDown(self) -> None:
        await self.client.aclose()
        await self.db.close()


class TestResolveModule(CrawlTestCase):
    def _add_module(self) -> None:
        self.portal.add(
            ProgramKind.MODULE_DETAILS,
            tid(0xA1),
            module_page("MOD-101", "Intro to Systems", "6,0", [(tid(0xB1), "C-1", "Lecture"), (tid(0xB2), "C-2", "Lab")]),
        )

    async def test_cold_cache(self) -> None:
        self._add_module()
        details = await self.crawler.resolve_module(tid(0xA1))

        m = details.module
        self.assertEqual((m.tucan_id, m.title, m.module_id, m.credits, m.done), (
            tid(0xA1), "Intro to Systems", "MOD-101", 6, True
        ))
        self.assertEqual([(c.tucan_id, c.done) for c in details.courses], [(tid(0xB1), False), (tid(0xB2), False)])
        self.assertEqual(self.portal.fetches(ProgramKind.MODULE_DETAILS, tid(0xA1)), 1)

    async def test_second_resolve_is_served_from_cache(self) -> None:
        self._add_module()
        first = await self.crawler.resolve_module(tid(0xA1))
        with self.assertLogs("tucache.crawl", level="DEBUG") as logs:
            second = await self.crawler.resolve_module(tid(0xA1))

        self.assertEqual(first, second)
        self.assertEqual(len(self.portal.requests), 1)
        self.assertIn("[~] module 00000000000000a1", logs.output[0])

    async def test_request_carries_session_cookie(self) -> None:
        self._add_module()
        await self.crawler.resolve_module(tid(0xA1))
        self.assertEqual(self.portal.cookies, ["cnsc=SID-1"])

    async def test_session_expiry_leaves_cache_untouched(self) -> None:
        async with self.store.transaction() as s:
            await self.store.insert_module_stubs(s, [Module.stub(tid(0xC1), "Stub", "MOD-C")])
        self.portal.add(ProgramKind.MODULE_DETAILS, tid(0xC1), timeout_page())

        with self.assertRaises(SessionExpired):
            await self.crawler.resolve_module(tid(0xC1))

        async with self.store.transaction() as s:
            row = (await s.execute(select(ModuleRow).where(ModuleRow.tucan_id == tid(0xC1)))).scalar_one()
        self.assertEqual((row.title, row.module_id, row.done), ("Stub", "MOD-C", False))

    async def test_extraction_error_is_not_persisted(self) -> None:
        self.portal.add(ProgramKind.MODULE_DETAILS, tid(0xA1), module_page("MOD-101", "Intro", credits=None))

        with self.assertRaises(ExtractionError):
            await self.crawler.resolve_module(tid(0xA1))
        self.assertIsNone(await self.store.get_module(tid(0xA1)))


class TestResolveCourse(CrawlTestCase):
    async def test_course_and_group_share_the_address_space(self) -> None:
        self.portal.add(
            ProgramKind.COURSE_DETAILS,
            tid(0xB1),
            course_page(
                "C-1",
                "Lecture",
                groups=[(tid(0xD1), "Gruppe 1")],
                events=[("Mo, 3. Apr. 2023", "10:00", "12:00", "S101", "Prof. X")],
            ),
        )
        self.portal.add(ProgramKind.COURSE_DETAILS, tid(0xD1), course_group_page(tid(0xB1), "C-1 Lecture", "Gruppe 1"))

        course = await self.crawler.resolve_course(tid(0xB1))
        group = await self.crawler.resolve_course(tid(0xD1))

        self.assertIsInstance(course, CourseDetails)
        self.assertEqual([g.tucan_id for g in course.course_groups], [tid(0xD1)])
        self.assertEqual(len(course.events), 1)

        self.assertIsInstance(group, CourseGroupDetails)
        self.assertEqual((group.course_group.course, group.course_group.done), (tid(0xB1), True))

        # both now answer from the cache
        self.assertIsInstance(await self.crawler.resolve_course(tid(0xD1)), CourseGroupDetails)
        self.assertIsInstance(await self.crawler.resolve_course(tid(0xB1)), CourseDetails)
        self.assertEqual(len(self.portal.requests), 2)


class TestResolveExam(CrawlTestCase):
    async def test_exam_details(self) -> None:
        self.portal.add(
            ProgramKind.EXAM_DETAILS, tid(0xE1), exam_page(modules=[(tid(0xA1), "MOD-101 Intro to Systems")])
        )
        details = await self.crawler.resolve_exam_details(tid(0xE1))

        self.assertEqual(details.exam.exam_type, "Klausur")
        self.assertEqual([(m.tucan_id, m.done) for m in details.modules], [(tid(0xA1), False)])
        await self.crawler.resolve_exam_details(tid(0xE1))
        self.assertEqual(len(self.portal.requests), 1)


class TestResolveRegistration(CrawlTestCase):
    async def test_module_leaf_level(self) -> None:
        self.portal.add(
            ProgramKind.REGISTRATION,
            tid(0x11),
            module_leaf_page(
                [(tid(0x10), "Informatik"), (tid(0x11), "Pflichtbereich")],
                [(tid(0xA1), "MOD-101 Intro to Systems", [(tid(0xB1), "C-1 Lecture")]), (tid(0xA2), "MOD-102 Seminar", [])],
            ),
        )

        first = await self.crawler.resolve_registration(tid(0x11))
        self.assertEqual(first.menu.child_type, ChildType.MODULES)
        self.assertEqual([m.tucan_id for m in first.modules], [tid(0xA1), tid(0xA2)])
        self.assertEqual(first.submenus, [])

        second = await self.crawler.resolve_registration(tid(0x11))
        self.assertEqual(second, first)
        self.assertEqual(self.portal.fetches(ProgramKind.REGISTRATION, tid(0x11)), 1)

        # the module's courses were linked as stubs
        self.portal.add(ProgramKind.MODULE_DETAILS, tid(0xA1), module_page("MOD-101", "Intro to Systems"))
        module = await self.crawler.resolve_module(tid(0xA1))
        self.assertEqual([c.tucan_id for c in module.courses], [tid(0xB1)])

    async def test_root_then_submenu(self) -> None:
        root = submenu_page([(tid(0x10), "Informatik")], [(tid(0x11), "Pflichtbereich"), (tid(0x12), "Wahlbereich")])
        self.portal.add(ProgramKind.ROOT_REGISTRATION, b"", root)
        self.portal.add(ProgramKind.REGISTRATION, tid(0x10), root)

        details = await self.crawler.resolve_registration()
        self.assertEqual(details.menu.tucan_id, tid(0x10))
        self.assertEqual(details.menu.child_type, ChildType.SUBMENU)
        self.assertEqual([(m.tucan_id, m.parent, m.done) for m in details.submenus], [
            (tid(0x11), tid(0x10), False),
            (tid(0x12), tid(0x10), False),
        ])

        # root id is remembered per user
        self.assertEqual(await self.crawler.resolve_registration(), details)
        self.assertEqual(await self.crawler.resolve_registration(tid(0x10)), details)
        self.assertEqual(len(self.portal.requests), 1)

    async def test_unknown_page_is_an_http_error(self) -> None:
        with self.assertRaises(httpx.HTTPStatusError):
            await self.crawler.resolve_registration(tid(0x99))


class TestListings(CrawlTestCase):
    def _add_modules(self, ids) -> None:
        for i, module_id in enumerate(ids):
            self.portal.add(ProgramKind.MODULE_DETAILS, module_id, module_page(f"MOD-{i}", f"Module {i}"))
        self.portal.add(
            ProgramKind.MY_MODULES,
            b"",
            listing_page(ProgramKind.MODULE_DETAILS, [(m, f"MOD-{i}") for i, m in enumerate(ids)]),
        )

    async def test_my_modules(self) -> None:
        self._add_modules([tid(0xA1), tid(0xA2), tid(0xA3)])

        modules = await self.crawler.resolve_my_modules()
        self.assertEqual([(m.tucan_id, m.done) for m in modules], [(tid(0xA1), True), (tid(0xA2), True), (tid(0xA3), True)])
        self.assertEqual(len(self.portal.requests), 4)

        self.assertEqual(await self.crawler.resolve_my_modules(), modules)
        self.assertEqual(len(self.portal.requests), 4)

    async def test_first_error_aborts_the_listing(self) -> None:
        self._add_modules([tid(0xA1), tid(0xA2), tid(0xA3)])
        self.portal.add(ProgramKind.MODULE_DETAILS, tid(0xA2), timeout_page())

        with self.assertRaises(SessionExpired):
            await self.crawler.resolve_my_modules()

        self.assertIsNone(await self.store.get_my_modules(SESSION.tu_id))
        self.assertIsNone(await self.store.get_module(tid(0xA2)))

    async def test_my_courses(self) -> None:
        self.portal.add(ProgramKind.COURSE_DETAILS, tid(0xB1), course_page("C-1", "Lecture"))
        self.portal.add(ProgramKind.COURSE_DETAILS, tid(0xD1), course_group_page(tid(0xB1), "C-1 Lecture", "Gruppe 1"))
        self.portal.add(
            ProgramKind.MY_COURSES,
            b"",
            listing_page(ProgramKind.COURSE_DETAILS, [(tid(0xB1), "C-1 Lecture"), (tid(0xD1), "Gruppe 1")]),
        )

        mine = await self.crawler.resolve_my_courses()
        self.assertEqual([c.tucan_id for c in mine.courses], [tid(0xB1)])
        self.assertEqual([g.tucan_id for g in mine.course_groups], [tid(0xD1)])

        await self.crawler.resolve_my_courses()
        self.assertEqual(len(self.portal.requests), 3)

    async def test_my_exams(self) -> None:
        self.portal.add(ProgramKind.EXAM_DETAILS, tid(0xE1), exam_page())
        self.portal.add(ProgramKind.EXAM_DETAILS, tid(0xE2), exam_page())
        self.portal.add(
            ProgramKind.MY_EXAMS,
            b"",
            my_exams_page(
                [
                    (ProgramKind.MODULE_DETAILS, tid(0xA1), "MOD-101 Intro to Systems", tid(0xE1)),
                    (ProgramKind.COURSE_DETAILS, tid(0xB1), "C-1 Lecture", tid(0xE2)),
                ]
            ),
        )

        mine = await self.crawler.resolve_my_exams()
        self.assertEqual([(m.tucan_id, m.module_id, e.tucan_id) for m, e in mine.modules], [
            (tid(0xA1), "MOD-101", tid(0xE1))
        ])
        self.assertEqual([(c.tucan_id, e.tucan_id) for c, e in mine.courses], [(tid(0xB1), tid(0xE2))])

        self.assertEqual(await self.crawler.resolve_my_exams(), mine)
        self.assertEqual(len(self.portal.requests), 3)

    async def test_personal_data(self) -> None:
        self.portal.add(
            ProgramKind.PERSONAL_ADDRESS, b"", personal_data_page({"Vorname": "Erika", "Nachname": "Mustermann"})
        )
        user = await self.crawler.resolve_personal_data()
        self.assertEqual((user.tu_id, user.first_name), ("em12abcd", "Erika"))
        self.assertEqual(await self.crawler.resolve_personal_data(), user)
        self.assertEqual(len(self.portal.requests), 1)


class TestConcurrencyLimit(CrawlTestCase):
    max_concurrency = 2
    delay = 0.02

    async def test_in_flight_requests_never_exceed_the_semaphore(self) -> None:
        ids = [tid(0xA0 + i) for i in range(6)]
        for i, module_id in enumerate(ids):
            self.portal.add(ProgramKind.MODULE_DETAILS, module_id, module_page(f"MOD-{i}", f"Module {i}"))

        await gather_all(self.crawler.resolve_module(m) for m in ids)

        self.assertEqual(len(self.portal.requests), 6)
        self.assertEqual(self.portal.max_in_flight, 2)


class TestGatherAll(unittest.IsolatedAsyncioTestCase):
    async def test_results_keep_order(self) -> None:
        async def value(v, delay):
            await asyncio.sleep(delay)
            return v

        self.assertEqual(await gather_all([value(1, 0.02), value(2, 0.0), value(3, 0.01)]), [1, 2, 3])
        self.assertEqual(await gather_all([]), [])

    async def test_first_error_cancels_siblings(self) -> None:
        cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        async def fail():
            raise ValueError("broken page")

        with self.assertRaises(ValueError):
            await gather_all([slow(), fail()])
        self.assertTrue(cancelled.is_set())


if __name__ == "__main__":
    unittest.main()
