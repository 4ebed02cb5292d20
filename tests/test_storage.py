"""
Tests for the cache store on a temporary SQLite file.

Storage contract:
- stubs never overwrite existing rows
- done never goes back to False
- parents and owners, once known, are kept
- a menu's child type is fixed once known
"""

import unittest
from datetime import datetime

from sqlalchemy import func, select

from portal_pages import TempDatabase
from tucache.db import CourseEventRow, CourseGroupRow, ModuleMenuRow, ModuleRow, init_db
from tucache.model import (
    ChildType,
    Course,
    CourseEvent,
    CourseGroup,
    Module,
    ModuleMenu,
    User,
    utcnow,
)
from tucache.storage import CacheStore


def complete_module(tucan_id: bytes, title: str = "Intro to Systems") -> Module:
    return Module(tucan_id, utcnow(), title, "MOD-101", 6, "<p>content</p>", True)


def complete_course(tucan_id: bytes) -> Course:
    return Course(tucan_id, utcnow(), "Lecture", "C-1", 4, "<p>content</p>", True)


def menu(tucan_id: bytes, child_type: ChildType, parent=None, done: bool = True) -> ModuleMenu:
    return ModuleMenu(tucan_id, utcnow(), "Informatik", "informatik", child_type, done, parent)


class TestCacheStore(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = TempDatabase()
        await self.db.start()
        self.store = CacheStore(self.db.engine)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def _row(self, row_class, **key):
        async with self.store.transaction() as s:
            return (await s.execute(select(row_class).filter_by(**key))).scalar_one_or_none()

    async def test_reads_ignore_stubs(self) -> None:
        async with self.store.transaction() as s:
            await self.store.insert_module_stubs(s, [Module.stub(b"\xa1", "Intro", "MOD-101")])

        self.assertIsNone(await self.store.get_module(b"\xa1"))
        self.assertIsNotNone(await self._row(ModuleRow, tucan_id=b"\xa1"))

    async def test_stub_does_not_overwrite_stub(self) -> None:
        async with self.store.transaction() as s:
            await self.store.insert_module_stubs(s, [Module.stub(b"\xa1", "first", "MOD-1")])
        async with self.store.transaction() as s:
            await self.store.insert_module_stubs(s, [Module.stub(b"\xa1", "second", "MOD-2")])

        row = await self._row(ModuleRow, tucan_id=b"\xa1")
        self.assertEqual((row.title, row.module_id, row.done), ("first", "MOD-1", False))

    async def test_stub_does_not_downgrade_complete_record(self) -> None:
        await self.store.complete_module(complete_module(b"\xa1"), [])
        async with self.store.transaction() as s:
            await self.store.insert_module_stubs(s, [Module.stub(b"\xa1", "stub title")])

        details = await self.store.get_module(b"\xa1")
        self.assertIsNotNone(details)
        self.assertEqual(details.module.title, "Intro to Systems")
        self.assertEqual(details.module.credits, 6)
        self.assertTrue(details.module.done)

    async def test_done_is_monotonic(self) -> None:
        await self.store.complete_module(complete_module(b"\xa1"), [])
        async with self.store.transaction() as s:
            incomplete = complete_module(b"\xa1", "Renamed")
            incomplete.done = False
            await self.store.upsert_module(s, incomplete)

        details = await self.store.get_module(b"\xa1")
        self.assertTrue(details.module.done)
        self.assertEqual(details.module.title, "Renamed")

    async def test_complete_module_links_course_stubs(self) -> None:
        await self.store.complete_module(
            complete_module(b"\xa1"), [Course.stub(b"\xb2", "Lab", "C-2"), Course.stub(b"\xb1", "Lecture", "C-1")]
        )
        details = await self.store.get_module(b"\xa1")
        self.assertEqual([c.tucan_id for c in details.courses], [b"\xb1", b"\xb2"])
        self.assertTrue(all(not c.done for c in details.courses))

        # linking again is a no-op
        await self.store.complete_module(complete_module(b"\xa1"), [Course.stub(b"\xb1")])
        details = await self.store.get_module(b"\xa1")
        self.assertEqual(len(details.courses), 2)
        self.assertEqual(details.courses[0].title, "Lecture")

    async def test_menu_parent_is_preserved(self) -> None:
        await self.store.complete_module_menu(menu(b"\x10", ChildType.SUBMENU))
        await self.store.complete_module_menu(menu(b"\x11", ChildType.MODULES, parent=b"\x10"))
        await self.store.complete_module_menu(menu(b"\x11", ChildType.MODULES, parent=None))

        row = await self._row(ModuleMenuRow, tucan_id=b"\x11")
        self.assertEqual(row.parent, b"\x10")

    async def test_menu_stub_gains_parent_but_keeps_it(self) -> None:
        async with self.store.transaction() as s:
            await self.store.insert_module_menu_stubs(s, [ModuleMenu.stub(b"\x10", "Root", "root", None)])
            await self.store.insert_module_menu_stubs(s, [ModuleMenu.stub(b"\x11", "A", "a", None)])
        async with self.store.transaction() as s:
            await self.store.insert_module_menu_stubs(s, [ModuleMenu.stub(b"\x11", "B", "b", b"\x10")])
        async with self.store.transaction() as s:
            await self.store.insert_module_menu_stubs(s, [ModuleMenu.stub(b"\x11", "C", "c", None)])

        row = await self._row(ModuleMenuRow, tucan_id=b"\x11")
        self.assertEqual((row.parent, row.name, row.done), (b"\x10", "A", False))

    async def test_child_type_is_fixed_once_known(self) -> None:
        await self.store.complete_module_menu(menu(b"\x10", ChildType.MODULES))
        await self.store.complete_module_menu(menu(b"\x10", ChildType.SUBMENU))

        details = await self.store.get_module_menu(b"\x10")
        self.assertEqual(details.menu.child_type, ChildType.MODULES)

    async def test_submenus_are_listed_by_parent(self) -> None:
        await self.store.complete_module_menu(
            menu(b"\x10", ChildType.SUBMENU),
            submenus=[ModuleMenu.stub(b"\x12", "B", "b", b"\x10"), ModuleMenu.stub(b"\x11", "A", "a", b"\x10")],
        )
        details = await self.store.get_module_menu(b"\x10")
        self.assertEqual([m.tucan_id for m in details.submenus], [b"\x11", b"\x12"])
        self.assertEqual(details.modules, [])
        self.assertIsNone(await self.store.get_module_menu(b"\x11"))

    async def test_events_are_unique_per_course_time_and_room(self) -> None:
        start, end = datetime(2023, 4, 3, 10), datetime(2023, 4, 3, 12)
        course = complete_course(b"\xb1")
        await self.store.complete_course(course, [], [CourseEvent(b"\xb1", start, end, "S101", "Prof. X")])
        await self.store.complete_course(
            course,
            [],
            [CourseEvent(b"\xb1", start, end, "S101", "Prof. Y"), CourseEvent(b"\xb1", start, end, "S202", "Prof. Y")],
        )

        async with self.store.transaction() as s:
            count = (await s.execute(select(func.count()).select_from(CourseEventRow))).scalar_one()
        self.assertEqual(count, 2)

        details = await self.store.get_course(b"\xb1")
        self.assertEqual([(e.room, e.teachers) for e in details.events], [("S101", "Prof. Y"), ("S202", "Prof. Y")])

    async def test_course_group_keeps_owner(self) -> None:
        await self.store.complete_course(complete_course(b"\xb1"), [CourseGroup.stub(b"\xd1", b"\xb1", "Gruppe 1")], [])
        await self.store.complete_course_group(CourseGroup(b"\xd1", None, "Gruppe 1", True), [])

        row = await self._row(CourseGroupRow, tucan_id=b"\xd1")
        self.assertEqual((row.course, row.done), (b"\xb1", True))

        details = await self.store.get_course(b"\xb1")
        self.assertEqual([g.tucan_id for g in details.course_groups], [b"\xd1"])

    async def test_failed_transaction_rolls_back(self) -> None:
        with self.assertRaises(RuntimeError):
            async with self.store.transaction() as s:
                await self.store.upsert_module(s, complete_module(b"\xa1"))
                raise RuntimeError("boom")

        self.assertIsNone(await self._row(ModuleRow, tucan_id=b"\xa1"))

    async def test_user_listings_are_unknown_until_saved(self) -> None:
        self.assertIsNone(await self.store.get_my_modules("em12abcd"))

        await self.store.save_my_modules("em12abcd", [])
        self.assertEqual(await self.store.get_my_modules("em12abcd"), [])
        self.assertIsNone(await self.store.get_my_courses("em12abcd"))
        self.assertIsNone(await self.store.get_user("em12abcd"))

    async def test_init_db_is_idempotent_and_logged(self) -> None:
        with self.assertLogs("tucache.db", level="INFO") as logs:
            await init_db(self.db.engine)
        self.assertIn("Database initialized", logs.output[0])

    async def test_user_profile_and_study(self) -> None:
        await self.store.save_user_study("em12abcd", b"\x10")
        self.assertEqual(await self.store.get_user_study("em12abcd"), b"\x10")

        await self.store.complete_user(User("em12abcd", first_name="Erika", last_name="Mustermann", done=True))
        user = await self.store.get_user("em12abcd")
        self.assertEqual((user.first_name, user.last_name, user.done), ("Erika", "Mustermann", True))


if __name__ == "__main__":
    unittest.main()
