"""The analysis database is where the loader puts everything it reconstructs:
address-space regions with their contents, names, comments, typed records,
entry points and import bindings.

``AnalysisDatabase`` specifies the interface the loader relies on and
implements the scalar accessors on top of it. ``MemoryDatabase`` is a plain
in-memory implementation.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List, Optional, Set, Tuple

import attr
from loguru import logger

from cellprx.exceptions import InvalidMemoryAccess
from cellprx.machine import PPU, Machine


@attr.s(auto_attribs=True)
class AddressRegion:
    #: First address of the region
    start: int
    #: First address past the region
    end: int
    name: str
    #: Region class ("CODE", "DATA", "CONST" or "BSS")
    sclass: str
    #: ``PROT_*`` bits
    permissions: int
    alignment: int
    #: Whether the region was backed by bytes of the file
    loaded: bool
    contents: bytearray = attr.ib(repr=False)
    #: The contents as they were before any patch
    original: bytes = attr.ib(repr=False)

    @property
    def size(self) -> int:
        return self.end - self.start

    def __contains__(self, address: int) -> bool:
        return self.start <= address < self.end


@attr.s(auto_attribs=True, frozen=True)
class EntryPoint:
    address: int
    name: str
    primary: bool


@attr.s(auto_attribs=True, frozen=True)
class ImportBinding:
    library: str
    address: int
    name: str


@attr.s(auto_attribs=True, frozen=True)
class TypedRecord:
    address: int
    size: int
    type_id: str


@attr.s(auto_attribs=True, frozen=True)
class StructureDeclaration:
    name: str
    size: int
    #: ``(member name, offset, size)`` tuples
    fields: Tuple[Tuple[str, int, int], ...]


class AnalysisDatabase(ABC):
    machine: Machine

    def __init__(self, machine: Machine = PPU):
        self.machine = machine

    # Address space

    @abstractmethod
    def create_address_region(
        self,
        start: int,
        size: int,
        name: str,
        sclass: str,
        permissions: int,
        alignment: int,
        data: Optional[bytes],
    ) -> AddressRegion:
        """Create a region of ``size`` bytes at ``start``. The region is
        filled with ``data`` (zero padded), or zero-initialized if ``data`` is
        ``None``."""

    @abstractmethod
    def get_mem(self, address: int, size: int, original: bool = False) -> bytes:
        """Read ``size`` bytes at ``address``. With ``original``, the bytes
        are read as they were before any patch was applied.

        Raises:
            InvalidMemoryAccess: The range is not inside a single region.

        """

    @abstractmethod
    def set_mem(self, address: int, content: bytes):
        pass

    # Annotations

    @abstractmethod
    def define_name(self, address: int, name: str):
        """Name ``address``. Naming an address again replaces its name."""

    @abstractmethod
    def annotate(self, address: int, text: str):
        pass

    @abstractmethod
    def declare_structure(
        self, name: str, size: int, fields: List[Tuple[str, int, int]]
    ):
        pass

    @abstractmethod
    def declare_typed_record(self, address: int, size: int, type_id: str):
        """Declare the data at ``address`` to be of type ``type_id``.
        Declaring the same record again is harmless."""

    @abstractmethod
    def register_entry_point(self, address: int, name: str, is_primary: bool):
        pass

    @abstractmethod
    def register_import_binding(self, library: str, address: int, name: str):
        pass

    @abstractmethod
    def mark_code(self, address: int):
        """Mark ``address`` as the start of a function for later analysis."""

    @abstractmethod
    def set_global_pointer(self, gp_value: int):
        pass

    # Scalar access

    def read(self, address: int, width: int, original: bool = False) -> int:
        raw = self.get_mem(address, width, original)
        return self.machine.unpack(raw, width)

    def patch(self, address: int, width: int, value: int):
        self.set_mem(address, self.machine.pack(value, width))

    def read_byte(self, address: int) -> int:
        return self.read(address, 1)

    def read_half(self, address: int) -> int:
        return self.read(address, 2)

    def read_word(self, address: int) -> int:
        return self.read(address, self.machine.sizeof_word)

    def patch_word(self, address: int, value: int):
        self.patch(address, self.machine.sizeof_word, value)

    def read_cstring(self, address: int, max_length: int = 0x400) -> str:
        """Read a NUL terminated string. The string ends at the first NUL, at
        the end of the region, or after ``max_length`` bytes."""
        chars = bytearray()
        for offset in range(max_length):
            try:
                char = self.read_byte(address + offset)
            except InvalidMemoryAccess:
                if not chars:
                    raise
                break
            if char == 0:
                break
            chars.append(char)
        return chars.decode("latin-1")


class MemoryDatabase(AnalysisDatabase):
    """Keeps everything in plain Python containers."""

    # pylint: disable=too-many-instance-attributes
    regions: List[AddressRegion]
    names: Dict[int, str]
    annotations: Dict[int, List[str]]
    structures: Dict[str, StructureDeclaration]
    typed_records: Dict[int, TypedRecord]
    entry_points: Dict[int, EntryPoint]
    import_bindings: List[ImportBinding]
    code: Set[int]
    gp_value: Optional[int]

    def __init__(self, machine: Machine = PPU):
        super().__init__(machine)
        self.regions = []
        self.names = {}
        self.annotations = defaultdict(list)
        self.structures = {}
        self.typed_records = {}
        self.entry_points = {}
        self.import_bindings = []
        self.code = set()
        self.gp_value = None

    def create_address_region(
        self,
        start: int,
        size: int,
        name: str,
        sclass: str,
        permissions: int,
        alignment: int,
        data: Optional[bytes],
    ) -> AddressRegion:
        contents = bytearray(size)
        if data is not None:
            data = data[:size]
            contents[: len(data)] = data
        region = AddressRegion(
            start=start,
            end=start + size,
            name=name,
            sclass=sclass,
            permissions=permissions,
            alignment=alignment,
            loaded=data is not None,
            contents=contents,
            original=bytes(contents),
        )
        for other in self.regions:
            if region.start < other.end and other.start < region.end:
                logger.warning(
                    f"Region {name or '<unnamed>'} {region.start:#x}..{region.end:#x} "
                    f"overlaps {other.name or '<unnamed>'} "
                    f"{other.start:#x}..{other.end:#x}"
                )
        self.regions.append(region)
        return region

    def find_region(self, address: int) -> Optional[AddressRegion]:
        # Later regions shadow earlier ones
        for region in reversed(self.regions):
            if address in region:
                return region
        return None

    def _locate(self, address: int, size: int) -> Tuple[AddressRegion, int]:
        region = self.find_region(address)
        if region is None or address + size > region.end:
            raise InvalidMemoryAccess(f"{address:#x}..{address + size:#x}")
        return region, address - region.start

    def get_mem(self, address: int, size: int, original: bool = False) -> bytes:
        region, offset = self._locate(address, size)
        source = region.original if original else region.contents
        return bytes(source[offset : offset + size])

    def set_mem(self, address: int, content: bytes):
        region, offset = self._locate(address, len(content))
        region.contents[offset : offset + len(content)] = content

    def define_name(self, address: int, name: str):
        previous = self.names.get(address)
        if previous is not None and previous != name:
            logger.debug(f"Renaming {address:#x}: {previous} -> {name}")
        self.names[address] = name

    def annotate(self, address: int, text: str):
        if text not in self.annotations[address]:
            self.annotations[address].append(text)

    def declare_structure(
        self, name: str, size: int, fields: List[Tuple[str, int, int]]
    ):
        self.structures[name] = StructureDeclaration(name, size, tuple(fields))

    def declare_typed_record(self, address: int, size: int, type_id: str):
        self.typed_records[address] = TypedRecord(address, size, type_id)

    def register_entry_point(self, address: int, name: str, is_primary: bool):
        self.entry_points[address] = EntryPoint(address, name, is_primary)

    def register_import_binding(self, library: str, address: int, name: str):
        binding = ImportBinding(library, address, name)
        if binding not in self.import_bindings:
            self.import_bindings.append(binding)

    def mark_code(self, address: int):
        self.code.add(address)

    def set_global_pointer(self, gp_value: int):
        self.gp_value = gp_value
