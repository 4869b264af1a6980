"""The NID database maps ``(library, nid)`` pairs to symbol names.

The names are stored in an XML file laid out as::

    <IdaInfoDatabase>
      <Group name="cellSysutil">
        <Entry id="0x0bae8772" name="cellVideoOutConfigure"/>
        ...
      </Group>
      ...
    </IdaInfoDatabase>

The database is loaded once and is read-only afterwards, so a single instance
can be shared between loads.
"""

import xml.etree.ElementTree as ElementTree
from typing import Dict, Iterator, Optional, Tuple

from loguru import logger

from cellprx.exceptions import NidDatabaseError


_DIGITS = "0123456789abcdef"


def parse_nid(text: str) -> int:
    """Parse a NID the way ``strtoul(text, 0, 0)`` would: hexadecimal with a
    ``0x`` prefix, octal with a leading zero, decimal otherwise. Parsing stops
    at the first character that is not a digit of the base, so ``"08"`` is 0.

    Raises:
        ValueError: ``text`` does not start with a digit.

    """
    body = text.strip()
    sign = -1 if body[:1] == "-" else 1
    if body[:1] in ("+", "-"):
        body = body[1:]
    if body[:2].lower() == "0x" and len(body) > 2 and body[2].lower() in _DIGITS:
        base, body = 16, body[2:]
    elif body[:1] == "0":
        base = 8
    else:
        base = 10
    digits = _DIGITS[:base]
    length = 0
    while length < len(body) and body[length].lower() in digits:
        length += 1
    if not length:
        raise ValueError(f"invalid NID: {text!r}")
    return sign * int(body[:length], base)


class NidDatabase:
    #: A mapping from library name to a mapping from NID to symbol name
    libraries: Dict[str, Dict[int, str]]

    def __init__(self, libraries: Optional[Dict[str, Dict[int, str]]] = None):
        self.libraries = libraries or {}

    def __len__(self) -> int:
        return sum(map(len, self.libraries.values()))

    def __contains__(self, key: Tuple[str, int]) -> bool:
        return self.lookup(*key) is not None

    def __iter__(self) -> Iterator[Tuple[str, int, str]]:
        for library, entries in self.libraries.items():
            for nid, name in entries.items():
                yield library, nid, name

    def lookup(self, library: str, nid: int) -> Optional[str]:
        """Resolve a NID of ``library``. Returns ``None`` if either the library
        or the NID is unknown."""
        entries = self.libraries.get(library)
        if entries is None:
            return None
        return entries.get(nid)

    @staticmethod
    def from_element(root: ElementTree.Element) -> "NidDatabase":
        libraries: Dict[str, Dict[int, str]] = {}
        for group in root:
            library = group.get("name")
            if library is None:
                raise NidDatabaseError(f"<{group.tag}> without a name attribute")
            # If a library or a NID is listed more than once, the first
            # occurrence wins
            entries = libraries.setdefault(library, {})
            for entry in group:
                nid_text, name = entry.get("id"), entry.get("name")
                if nid_text is None or name is None:
                    raise NidDatabaseError(
                        f"Incomplete <{entry.tag}> in library {library}"
                    )
                try:
                    nid = parse_nid(nid_text)
                except ValueError as error:
                    raise NidDatabaseError(
                        f"Invalid NID {nid_text!r} in library {library}"
                    ) from error
                entries.setdefault(nid & 0xFFFFFFFF, name)
        return NidDatabase(libraries)

    @staticmethod
    def from_string(text: str) -> "NidDatabase":
        try:
            root = ElementTree.fromstring(text)
        except ElementTree.ParseError as error:
            raise NidDatabaseError(f"Failed to parse NID database: {error}") from error
        return NidDatabase.from_element(root)

    @staticmethod
    def load(filename: str) -> "NidDatabase":
        """Load the database from an XML file.

        Raises:
            NidDatabaseError: The file could not be found or parsed.

        """
        try:
            tree = ElementTree.parse(filename)
        except OSError as error:
            raise NidDatabaseError(
                f"Could not locate database file ({filename})"
            ) from error
        except ElementTree.ParseError as error:
            raise NidDatabaseError(
                f"Failed to load database file ({filename}): {error}"
            ) from error
        database = NidDatabase.from_element(tree.getroot())
        logger.info(
            f"Loaded {len(database)} NIDs of {len(database.libraries)} libraries "
            f"from {filename}"
        )
        return database
