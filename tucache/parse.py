"""
Parsing (portal HTML -> records).

One extractor per page kind. Extractors are pure: they take a fetched Document
(and the identifier of the entity shown) and return records, or raise
ExtractionError naming the missing field and the document URL.

Rules:
- a missing required element is an ExtractionError, never a partial record
- hyperlinks to *other* entities that do not decode are skipped (logged)
- starred (irregular) schedule entries are discarded
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Tuple

from bs4 import Comment, NavigableString, Tag

from tucache.errors import AddressDecodeError, ExtractionError
from tucache.model import (
    ChildType,
    Course,
    CourseEvent,
    CourseGroup,
    CourseGroupEvent,
    Exam,
    Module,
    ModuleMenu,
    User,
    utcnow,
)
from tucache.scrape import Document
from tucache.url import Program, ProgramKind, decode, decode_as

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MONTHS = {
    "Jan.": 1,
    "Feb.": 2,
    "Mär.": 3,
    "Apr.": 4,
    "Mai": 5,
    "Jun.": 6,
    "Jul.": 7,
    "Aug.": 8,
    "Sep.": 9,
    "Okt.": 10,
    "Nov.": 11,
    "Dez.": 12,
}

_DATE = r"[^\s,]+, (\d{1,2})\. (\S+) (\d{4})"
_SCHEDULE_RE = re.compile(rf"^{_DATE} (\d{{2}}):(\d{{2}})\s*-\s*(\d{{2}}):(\d{{2}})\s*(\*)?$")
_DATETIME_RE = re.compile(rf"^{_DATE} (\d{{2}}):(\d{{2}})$")
_SLUG_RE = re.compile(r"[ /)(.]+")

PLACEHOLDER_PREFIX = b"\x00uncategorized"
PLACEHOLDER_TITLE = "Uncategorized courses"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize(text: str) -> str:
    """
    Turn a free-text label into a slug: lowercase, runs of " /)(." become
    one hyphen, no leading or trailing hyphens.
    """
    return _SLUG_RE.sub("-", text.lower()).strip("-")


def split_code_title(text: str) -> Tuple[str, str]:
    """'MOD-101 Intro to Systems' -> ('MOD-101', 'Intro to Systems')."""
    parts = text.strip().split(None, 1)
    if not parts:
        return "", ""
    if len(parts) == 1:
        return parts[0], parts[0]
    return parts[0], parts[1].strip()


def _required(doc: Document, selector: str, entity_id: Optional[bytes] = None) -> Tag:
    element = doc.soup.select_one(selector)
    if element is None:
        raise ExtractionError(selector, doc.url, entity_id)
    return element


def find_label_value(
    doc: Document,
    caption: str,
    entity_id: Optional[bytes] = None,
    required: bool = True,
) -> Optional[str]:
    """
    Label-anchored field scan.

    Finds the bold element in the content area whose trimmed text equals the
    trimmed caption and returns the text node right after it.
    """
    wanted = caption.strip()
    for label in doc.soup.select("#contentlayoutleft b"):
        if label.get_text().strip() != wanted:
            continue
        value = label.next_sibling
        if isinstance(value, NavigableString) and not isinstance(value, Comment):
            return str(value).strip()
    if required:
        raise ExtractionError(wanted, doc.url, entity_id)
    return None


def _decoded_links(anchors: Iterable[Tag], doc: Document) -> Iterator[Tuple[Program, Tag]]:
    """Decode anchors to Programs, skipping the ones that are not portal addresses."""
    for a in anchors:
        href = a.get("href")
        if not href:
            continue
        try:
            yield decode(href), a
        except AddressDecodeError as e:
            log.debug("skipping link in %s: %s", doc.url, e)


def _child_id(a: Tag, kind: ProgramKind, doc: Document) -> Optional[bytes]:
    """Identifier of a child entity link, or None (logged) when it does not decode to `kind`."""
    try:
        return decode_as(a.get("href", ""), kind)
    except AddressDecodeError as e:
        log.warning("skipping child link in %s: %s", doc.url, e)
        return None


def _unique(ids: Iterable[bytes]) -> List[bytes]:
    seen: set[bytes] = set()
    out: List[bytes] = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


# ---------------------------------------------------------------------------
# Date parsing
# ---------------------------------------------------------------------------


def _day(day: str, month: str, year: str) -> Optional[datetime]:
    month_nr = MONTHS.get(month)
    if month_nr is None:
        return None
    try:
        return datetime(int(year), month_nr, int(day))
    except ValueError:
        return None


def parse_schedule(line: str) -> Optional[Tuple[datetime, datetime, bool]]:
    """
    Parses one schedule line into (start, end, starred).

        "Mo, 3. Apr. 2023 10:00-12:00"   -> (2023-04-03 10:00, 2023-04-03 12:00, False)
        "Mo, 3. Apr. 2023 10:00-24:00*"  -> (2023-04-03 10:00, 2023-04-03 23:59, True)

    A trailing '*' marks an irregular event. An end time of 24:00 means the end
    of that same day. Returns None if the line does not have this shape.
    """
    m = _SCHEDULE_RE.match(line.strip())
    if not m:
        return None
    day, month, year, sh, sm, eh, em, star = m.groups()

    date = _day(day, month, year)
    if date is None:
        return None

    start_h, start_m, end_h, end_m = int(sh), int(sm), int(eh), int(em)
    if (end_h, end_m) == (24, 0):
        end_h, end_m = 23, 59
    if start_h > 23 or end_h > 23 or start_m > 59 or end_m > 59:
        return None

    start = date + timedelta(hours=start_h, minutes=start_m)
    end = date + timedelta(hours=end_h, minutes=end_m)
    return start, end, star is not None


def parse_datetime(text: str) -> Optional[datetime]:
    """'Mo, 1. Mär. 2023 08:00' -> datetime, or None."""
    m = _DATETIME_RE.match(text.strip())
    if not m:
        return None
    day, month, year, hh, mm = m.groups()
    date = _day(day, month, year)
    if date is None or int(hh) > 23 or int(mm) > 59:
        return None
    return date + timedelta(hours=int(hh), minutes=int(mm))


def parse_window(text: str) -> Optional[Tuple[datetime, datetime]]:
    """'<datetime> - <datetime>' -> (start, end), or None."""
    parts = text.split(" - ")
    if len(parts) != 2:
        return None
    start = parse_datetime(parts[0])
    end = parse_datetime(parts[1])
    if start is None or end is None:
        return None
    return start, end


# ---------------------------------------------------------------------------
# Schedule tables
# ---------------------------------------------------------------------------


class ScheduleEntry(NamedTuple):
    start: datetime
    end: datetime
    room: str
    teachers: str


def extract_events(doc: Document, entity_id: Optional[bytes] = None) -> List[ScheduleEntry]:
    """
    Reads the appointment rows of a course or course group page.

    Each row has the cells appointmentDate ("Mo, 3. Apr. 2023"),
    appointmentTimeFrom, appointmentDateTo, appointmentRooms and
    appointmentInstructors. Starred entries are dropped; rows sharing
    start, end and room collapse into one.
    """
    entries: Dict[Tuple[datetime, datetime, str], ScheduleEntry] = {}

    for row in doc.soup.select("#contentlayoutleft tr"):
        date_cell = row.select_one('td[name="appointmentDate"]')
        if date_cell is None:
            continue

        cells = {}
        for name in ("appointmentTimeFrom", "appointmentDateTo", "appointmentRooms", "appointmentInstructors"):
            cell = row.select_one(f'td[name="{name}"]')
            if cell is None:
                raise ExtractionError(name, doc.url, entity_id)
            cells[name] = cell.get_text(" ", strip=True)

        line = f"{date_cell.get_text(' ', strip=True)} {cells['appointmentTimeFrom']}-{cells['appointmentDateTo']}"
        parsed = parse_schedule(line)
        if parsed is None:
            raise ExtractionError("appointmentDate", doc.url, entity_id)

        start, end, starred = parsed
        if starred:
            # irregular events are not stored
            continue

        room = cells["appointmentRooms"]
        entries[(start, end, room)] = ScheduleEntry(start, end, room, cells["appointmentInstructors"])

    return list(entries.values())


# ---------------------------------------------------------------------------
# Modules
# ---------------------------------------------------------------------------


def _parse_credits(value: str) -> Optional[int]:
    m = re.fullmatch(r"(\d+)(?:,0+)?", value.strip())
    return int(m.group(1)) if m else None


def _module_course_links(doc: Document) -> List[Course]:
    """
    Course stubs of a module page.

    Each course row holds two consecutive eventLink anchors with the same
    target: the course code and the course title.
    """
    rows: Dict[int, List[Tag]] = {}
    for a in doc.soup.select('a[name="eventLink"]'):
        row = a.find_parent("tr")
        # an anchor outside any row is a group of its own
        rows.setdefault(id(row) if row is not None else id(a), []).append(a)

    courses: Dict[bytes, Course] = {}
    for links in rows.values():
        for i in range(0, len(links), 2):
            code_link = links[i]
            title_link = links[i + 1] if i + 1 < len(links) else code_link
            course_id = _child_id(code_link, ProgramKind.COURSE_DETAILS, doc)
            if course_id is None or course_id in courses:
                continue
            courses[course_id] = Course.stub(
                course_id,
                title=title_link.get_text(strip=True),
                course_id=code_link.get_text(strip=True),
            )
    return list(courses.values())


def extract_module(doc: Document, module_id: bytes) -> Tuple[Module, List[Course]]:
    """Module details page -> complete Module plus stubs of the courses it lists."""
    heading = _required(doc, "h1", module_id).get_text()
    if "\xa0" not in heading:
        raise ExtractionError("h1 module code/title", doc.url, module_id)
    code, title = (part.strip() for part in heading.split("\xa0", 1))

    credits = _parse_credits(find_label_value(doc, "Credits:", module_id) or "")
    content = _required(doc, "#contentlayoutleft tr.tbdata", module_id).decode_contents()

    module = Module(
        tucan_id=module_id,
        tucan_last_checked=utcnow(),
        title=title,
        module_id=code,
        credits=credits,
        content=content,
        done=True,
    )
    return module, _module_course_links(doc)


# ---------------------------------------------------------------------------
# Courses and course groups
# ---------------------------------------------------------------------------


def is_course_group(doc: Document) -> bool:
    """Course group pages carry the group name as an <h2> directly after the course <h1>."""
    return doc.soup.select_one("#contentlayoutleft h1 + h2") is not None


def extract_course(doc: Document, course_id: bytes) -> Tuple[Course, List[CourseGroup], List[CourseEvent]]:
    lines = [line.strip() for line in _required(doc, "h1", course_id).get_text().splitlines() if line.strip()]
    if len(lines) < 2:
        raise ExtractionError("h1 course code/title", doc.url, course_id)
    code, title = lines[0], lines[1]

    sws_text = find_label_value(doc, "Semesterwochenstunden:", course_id, required=False)
    sws = int(sws_text) if sws_text and sws_text.isdigit() else 0

    content = _required(doc, "#contentlayoutleft td.tbdata", course_id).decode_contents()

    groups: Dict[bytes, CourseGroup] = {}
    for item in doc.soup.select("#contentlayoutleft li.listelement"):
        link = item.select_one(".dl-link a[href]")
        if link is None:
            continue
        group_id = _child_id(link, ProgramKind.COURSE_DETAILS, doc)
        if group_id is None:
            continue
        headline = item.select_one(".dl-ul-li-headline")
        title_text = headline.get_text(strip=True) if headline else link.get_text(strip=True)
        groups.setdefault(group_id, CourseGroup.stub(group_id, course_id, title_text))

    events = [
        CourseEvent(course_id, e.start, e.end, e.room, e.teachers) for e in extract_events(doc, course_id)
    ]

    course = Course(
        tucan_id=course_id,
        tucan_last_checked=utcnow(),
        title=title,
        course_id=code,
        sws=sws,
        content=content,
        done=True,
    )
    return course, list(groups.values()), events


def extract_course_group(doc: Document, group_id: bytes) -> Tuple[CourseGroup, List[CourseGroupEvent]]:
    title = _required(doc, "#contentlayoutleft h1 + h2", group_id).get_text(strip=True)

    # the owning course is linked from the heading on most group pages
    course = None
    link = doc.soup.select_one("#contentlayoutleft h1 a[href]")
    if link is not None:
        course = _child_id(link, ProgramKind.COURSE_DETAILS, doc)

    events = [
        CourseGroupEvent(group_id, e.start, e.end, e.room, e.teachers) for e in extract_events(doc, group_id)
    ]
    return CourseGroup(group_id, course, title, True), events


# ---------------------------------------------------------------------------
# Exams
# ---------------------------------------------------------------------------


def _window(doc: Document, caption: str, exam_id: bytes) -> Tuple[datetime, datetime]:
    value = find_label_value(doc, caption, exam_id) or ""
    window = parse_window(value)
    if window is None:
        raise ExtractionError(caption, doc.url, exam_id)
    return window


def extract_exam(doc: Document, exam_id: bytes) -> Tuple[Exam, List[Module], List[Course]]:
    """
    Exam details page -> Exam plus stubs of the modules and courses it belongs to.

    Required labels: Prüfungsart, Semester, Anmeldezeitraum, Abmeldezeitraum.
    Optional labels: Termin, Prüfer, Raum.
    """
    exam_type = find_label_value(doc, "Prüfungsart:", exam_id) or ""
    semester = find_label_value(doc, "Semester:", exam_id) or ""

    exam_start = exam_end = None
    termin = find_label_value(doc, "Termin:", exam_id, required=False)
    if termin:
        parsed = parse_schedule(termin)
        if parsed is None:
            raise ExtractionError("Termin:", doc.url, exam_id)
        exam_start, exam_end, _starred = parsed

    registration_start, registration_end = _window(doc, "Anmeldezeitraum:", exam_id)
    unregistration_start, unregistration_end = _window(doc, "Abmeldezeitraum:", exam_id)

    modules: Dict[bytes, Module] = {}
    courses: Dict[bytes, Course] = {}
    for program, a in _decoded_links(doc.soup.select("#contentlayoutleft a[href]"), doc):
        code, title = split_code_title(a.get_text(" ", strip=True))
        if program.kind is ProgramKind.MODULE_DETAILS:
            modules.setdefault(program.identifier, Module.stub(program.identifier, title, code))
        elif program.kind is ProgramKind.COURSE_DETAILS:
            courses.setdefault(program.identifier, Course.stub(program.identifier, title, code))

    exam = Exam(
        tucan_id=exam_id,
        exam_type=exam_type,
        semester=semester,
        exam_time_start=exam_start,
        exam_time_end=exam_end,
        registration_start=registration_start,
        registration_end=registration_end,
        unregistration_start=unregistration_start,
        unregistration_end=unregistration_end,
        examinator=find_label_value(doc, "Prüfer:", exam_id, required=False) or None,
        room=find_label_value(doc, "Raum:", exam_id, required=False) or None,
        done=True,
    )
    return exam, list(modules.values()), list(courses.values())


# ---------------------------------------------------------------------------
# Registration menu
# ---------------------------------------------------------------------------


class TokenKind(Enum):
    HEADER = "header"
    LINK = "link"
    SEPARATOR = "separator"


class Token(NamedTuple):
    kind: TokenKind
    element: Tag


def _module_anchor(t: Tag) -> bool:
    return t.name == "a" and t.has_attr("href") and t.get("name") != "eventLink"


def _is_module_header(el: Tag) -> bool:
    return el.name == "b" and el.find(_module_anchor) is not None


def tokenize_course_status(table: Tag) -> List[Token]:
    """
    Flattens a registration module table into tokens, in document order:
    HEADER for a bold module link, LINK for a course eventLink, SEPARATOR
    for each table row.
    """
    tokens: List[Token] = []
    for el in table.descendants:
        if not isinstance(el, Tag):
            continue
        if el.name == "tr":
            tokens.append(Token(TokenKind.SEPARATOR, el))
        elif el.name == "a" and el.get("name") == "eventLink" and el.has_attr("href"):
            tokens.append(Token(TokenKind.LINK, el))
        elif _is_module_header(el):
            tokens.append(Token(TokenKind.HEADER, el))
    return tokens


def group_module_courses(tokens: Iterable[Token]) -> List[Tuple[Optional[Tag], List[Tag]]]:
    """
    Grammar over the token stream:

        unit := HEADER LINK*  |  LINK+        (SEPARATORs are ignored)

    Returns (header, links) per unit. Links before the first header form a
    unit with header None.
    """
    units: List[Tuple[Optional[Tag], List[Tag]]] = []
    current: Optional[Tuple[Optional[Tag], List[Tag]]] = None
    for token in tokens:
        if token.kind is TokenKind.HEADER:
            current = (token.element, [])
            units.append(current)
        elif token.kind is TokenKind.LINK:
            if current is None:
                current = (None, [])
                units.append(current)
            current[1].append(token.element)
    return units


def placeholder_module(menu_id: bytes) -> Module:
    """The synthetic module collecting a menu's courses that have no module header."""
    return Module(
        tucan_id=PLACEHOLDER_PREFIX + menu_id,
        tucan_last_checked=utcnow(),
        title=PLACEHOLDER_TITLE,
        module_id=normalize(PLACEHOLDER_TITLE),
        credits=None,
        content="",
        done=True,
    )


@dataclass
class MenuChildren:
    submenus: List[ModuleMenu] = field(default_factory=list)
    modules: List[Tuple[Module, List[Course]]] = field(default_factory=list)


def _menu_name(doc: Document, entity_id: Optional[bytes]) -> Tag:
    # the breadcrumb ends with the current menu; comment-only anchors have no text
    links = [a for a in doc.soup.select("h2 a") if a.get_text(strip=True)]
    if not links:
        raise ExtractionError("h2 a", doc.url, entity_id)
    return links[-1]


def extract_root_registration(doc: Document) -> bytes:
    """Identifier of the root registration menu shown on the root registration page."""
    link = _menu_name(doc, None)
    return decode_as(link.get("href", ""), ProgramKind.REGISTRATION)


def _module_entries(doc: Document, table: Tag, menu_id: bytes) -> List[Tuple[Module, List[Course]]]:
    entries: Dict[bytes, Tuple[Module, List[Course]]] = {}

    for header, links in group_module_courses(tokenize_course_status(table)):
        module = None
        if header is not None:
            anchor = header.find(_module_anchor)
            module_id = _child_id(anchor, ProgramKind.MODULE_DETAILS, doc)
            if module_id is not None:
                code, title = split_code_title(anchor.get_text(" ", strip=True))
                module = Module.stub(module_id, title, code)

        courses: List[Course] = []
        for a in links:
            course_id = _child_id(a, ProgramKind.COURSE_DETAILS, doc)
            if course_id is not None:
                code, title = split_code_title(a.get_text(" ", strip=True))
                courses.append(Course.stub(course_id, title, code))

        if module is None:
            if not courses:
                continue
            module = placeholder_module(menu_id)

        _, known = entries.setdefault(module.tucan_id, (module, []))
        known_ids = {c.tucan_id for c in known}
        known.extend(c for c in courses if c.tucan_id not in known_ids)

    return list(entries.values())


def extract_module_menu(doc: Document, menu_id: bytes) -> Tuple[ModuleMenu, MenuChildren]:
    """
    Registration page -> the menu node plus its children.

    A node lists either submenus (#contentSpacer_IE ul) or modules
    (table.tbcoursestatus). Exactly one of both must be present.
    """
    name = _menu_name(doc, menu_id).get_text(" ", strip=True)

    submenu_list = doc.soup.select_one("#contentSpacer_IE ul")
    modules_table = doc.soup.select_one("table.tbcoursestatus")
    if (submenu_list is None) == (modules_table is None):
        raise ExtractionError("#contentSpacer_IE ul | table.tbcoursestatus", doc.url, menu_id)

    children = MenuChildren()
    if submenu_list is not None:
        child_type = ChildType.SUBMENU
        seen: set[bytes] = set()
        for a in submenu_list.select("a[href]"):
            child_id = _child_id(a, ProgramKind.REGISTRATION, doc)
            if child_id is None or child_id in seen:
                continue
            seen.add(child_id)
            child_name = a.get_text(" ", strip=True)
            children.submenus.append(ModuleMenu.stub(child_id, child_name, normalize(child_name), parent=menu_id))
    else:
        child_type = ChildType.MODULES
        children.modules = _module_entries(doc, modules_table, menu_id)

    menu = ModuleMenu(
        tucan_id=menu_id,
        tucan_last_checked=utcnow(),
        name=name,
        normalized_name=normalize(name),
        child_type=child_type,
        done=True,
    )
    return menu, children


# ---------------------------------------------------------------------------
# Listings of the logged-in user
# ---------------------------------------------------------------------------


def extract_listing(doc: Document, kind: ProgramKind) -> List[bytes]:
    """Identifiers of all `kind` links in the listing table of a my-modules / my-courses page."""
    ids = (
        program.identifier
        for program, _a in _decoded_links(doc.soup.select("#contentlayoutleft table.nb a[href]"), doc)
        if program.kind is kind
    )
    return _unique(ids)


def extract_my_exams(doc: Document) -> List[Tuple[bytes, Program, str]]:
    """
    Rows of the my-exams table as (exam id, owner program, owner link text).

    The owner is the module or course the exam belongs to. Rows without an
    exam link or without an owner link are skipped.
    """
    rows: List[Tuple[bytes, Program, str]] = []
    seen: set[bytes] = set()
    for tr in doc.soup.select("#contentlayoutleft table.nb tr"):
        exam_id = None
        owner: Optional[Tuple[Program, str]] = None
        for program, a in _decoded_links(tr.select("a[href]"), doc):
            if program.kind is ProgramKind.EXAM_DETAILS and exam_id is None:
                exam_id = program.identifier
            elif program.kind in (ProgramKind.MODULE_DETAILS, ProgramKind.COURSE_DETAILS) and owner is None:
                owner = (program, a.get_text(" ", strip=True))
        if exam_id is None or owner is None or exam_id in seen:
            continue
        seen.add(exam_id)
        rows.append((exam_id, owner[0], owner[1]))
    return rows


def _extract_kv_table(doc: Document) -> Dict[str, str]:
    """
    Extracts key-value pairs from the two-column data table.
    """
    data: Dict[str, str] = {}
    for row in doc.soup.select("#contentlayoutleft table.tb tr"):
        cells = row.find_all("td")

        # Only rows with exactly two cells are relevant
        if len(cells) != 2:
            continue

        key = cells[0].get_text(strip=True).rstrip(":")
        data[key] = cells[1].get_text(" ", strip=True)
    return data


def extract_personal_data(doc: Document, tu_id: str) -> User:
    """Personal address page -> User profile. First and last name are required."""
    kv = _extract_kv_table(doc)
    for required in ("Vorname", "Nachname"):
        if required not in kv:
            raise ExtractionError(required, doc.url)

    return User(
        tu_id=tu_id,
        title=kv.get("Titel", ""),
        academic_title=kv.get("Akademischer Grad", ""),
        first_name=kv["Vorname"],
        last_name=kv["Nachname"],
        email=kv.get("E-Mail", ""),
        street=kv.get("Straße", ""),
        plz=kv.get("PLZ", ""),
        city=kv.get("Ort", ""),
        done=True,
    )
