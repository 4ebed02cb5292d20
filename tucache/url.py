"""
Address codec for portal URLs.

Every portal page is addressed as

    <base>/scripts/mgrqispi.dll?APPNAME=CampusNet&PRGNAME=<program>&ARGUMENTS=<args>

where <args> is a comma separated list of sign-prefixed arguments:
"-N<digits>" for numbers and "-A<text>" for strings.

Layout used here:
- "-N<session nr>"    (ignored when decoding)
- "-N<menu id>"       six digits, fixed per program
- "-A"                only for the root registration page
- identifier numbers  one unsigned 64-bit number per argument in plain decimal
                      ("-N0" included), each standing for 8 big-endian bytes
                      of the identifier
"""

from __future__ import annotations

import re
from enum import Enum
from typing import NamedTuple, Optional
from urllib.parse import parse_qs, urlencode, urljoin, urlsplit

from tucache.errors import AddressDecodeError, UnexpectedProgram


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BASE_URL = "https://www.tucan.tu-darmstadt.de"
DLL_PATH = "/scripts/mgrqispi.dll"
APPNAME = "CampusNet"

# bytes per identifier argument
CHUNK_SIZE = 8

_NUMBER_ARG = re.compile(r"-N(\d+)", re.ASCII)


class ProgramKind(Enum):
    MODULE_DETAILS = "module_details"
    COURSE_DETAILS = "course_details"
    EXAM_DETAILS = "exam_details"
    REGISTRATION = "registration"
    ROOT_REGISTRATION = "root_registration"
    MY_MODULES = "my_modules"
    MY_COURSES = "my_courses"
    MY_EXAMS = "my_exams"
    PERSONAL_ADDRESS = "personal_address"


# kind -> (PRGNAME, menu id)
_PROGRAMS = {
    ProgramKind.MODULE_DETAILS: ("MODULEDETAILS", "000311"),
    ProgramKind.COURSE_DETAILS: ("COURSEDETAILS", "000274"),
    ProgramKind.EXAM_DETAILS: ("EXAMDETAILS", "000318"),
    ProgramKind.REGISTRATION: ("REGISTRATION", "000311"),
    ProgramKind.ROOT_REGISTRATION: ("REGISTRATION", "000311"),
    ProgramKind.MY_MODULES: ("MYMODULES", "000275"),
    ProgramKind.MY_COURSES: ("PROFCOURSES", "000274"),
    ProgramKind.MY_EXAMS: ("MYEXAMS", "000318"),
    ProgramKind.PERSONAL_ADDRESS: ("PERSADDRESS", "000273"),
}

_ROOT_MARKER = "-A"


class Program(NamedTuple):
    """A decoded portal address: which page, and the binary identifier it shows."""

    kind: ProgramKind
    identifier: bytes = b""

    def url(self, session_nr: Optional[int] = None, base_url: str = BASE_URL) -> str:
        return encode(self.kind, self.identifier, session_nr=session_nr, base_url=base_url)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _encode_identifier(identifier: bytes) -> list[str]:
    if len(identifier) % CHUNK_SIZE:
        raise ValueError(f"identifier length {len(identifier)} is not a multiple of {CHUNK_SIZE}")
    return [
        f"-N{int.from_bytes(identifier[i : i + CHUNK_SIZE], 'big')}"
        for i in range(0, len(identifier), CHUNK_SIZE)
    ]


def encode(
    kind: ProgramKind,
    identifier: bytes = b"",
    session_nr: Optional[int] = None,
    base_url: str = BASE_URL,
) -> str:
    """
    Build the absolute portal URL for one program and identifier.

    The identifier must be a whole number of 8-byte chunks (ValueError otherwise).
    The session number is only needed for requests; hyperlinks compared
    against each other should be decoded rather than compared as strings.
    """
    prgname, menu = _PROGRAMS[kind]
    args = [f"-N{session_nr or 0}", f"-N{menu}"]
    if kind is ProgramKind.ROOT_REGISTRATION:
        args.append(_ROOT_MARKER)
    args.extend(_encode_identifier(identifier))

    query = urlencode({"APPNAME": APPNAME, "PRGNAME": prgname, "ARGUMENTS": ",".join(args)}, safe=",-")
    return f"{base_url.rstrip('/')}{DLL_PATH}?{query}"


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _number(url: str, arg: str) -> int:
    match = _NUMBER_ARG.fullmatch(arg)
    if match is None:
        raise AddressDecodeError(url, f"unexpected argument {arg!r}")
    digits = match.group(1)
    # longer than any 64-bit number
    if len(digits) > 20:
        raise AddressDecodeError(url, f"argument {arg!r} out of range")
    return int(digits)


def _decode_identifier(url: str, args: list[str]) -> bytes:
    out = bytearray()
    for arg in args:
        number = _number(url, arg)
        if number >= 2**64:
            raise AddressDecodeError(url, f"argument {arg!r} out of range")
        out += number.to_bytes(CHUNK_SIZE, "big")
    return bytes(out)


def decode(url: str, base_url: str = BASE_URL) -> Program:
    """
    Decode an absolute or portal-relative URL into a Program.

    Raises AddressDecodeError for anything that is not a well-formed portal address.
    """
    try:
        parts = urlsplit(urljoin(base_url.rstrip("/") + "/", url.strip()))
        query = parse_qs(parts.query, keep_blank_values=True)
    except ValueError as e:
        raise AddressDecodeError(url, str(e)) from e

    if parts.path != DLL_PATH:
        raise AddressDecodeError(url, f"unexpected path {parts.path!r}")
    if query.get("APPNAME") != [APPNAME]:
        raise AddressDecodeError(url, "missing or unknown APPNAME")
    prgname = (query.get("PRGNAME") or [""])[0]
    arguments = (query.get("ARGUMENTS") or [""])[0]

    args = [a.strip() for a in arguments.split(",")] if arguments else []
    # tolerate a trailing comma
    if args and args[-1] == "":
        args.pop()
    if len(args) < 2:
        raise AddressDecodeError(url, "too few arguments")
    _number(url, args[0])

    rest = args[2:]
    if prgname == "REGISTRATION" and rest[:1] == [_ROOT_MARKER]:
        return Program(ProgramKind.ROOT_REGISTRATION, _decode_identifier(url, rest[1:]))

    for kind, (name, _menu) in _PROGRAMS.items():
        if name == prgname and kind is not ProgramKind.ROOT_REGISTRATION:
            return Program(kind, _decode_identifier(url, rest))

    raise AddressDecodeError(url, f"unknown program {prgname!r}")


def decode_as(url: str, kind: ProgramKind, base_url: str = BASE_URL) -> bytes:
    """Decode a URL and require it to address `kind`; return the identifier."""
    program = decode(url, base_url=base_url)
    if program.kind is not kind:
        raise UnexpectedProgram(url, expected=kind, actual=program.kind)
    return program.identifier
