"""Walks the library entry (export) and library stub (import) tables of an
image and names what they reference.

Imported and exported objects are identified by NIDs, 32bit hashes of their
names. Each table is a sequence of variable length records whose first byte is
the size of the record, describing one library each. A record points to a
table of NIDs and a parallel table of addresses.
"""

from enum import Enum
from typing import Iterator, Optional, Union

import attr
from construct import Container, Struct
from loguru import logger

from cellprx.database import AnalysisDatabase
from cellprx.exceptions import InvalidMemoryAccess
from cellprx.nids import NidDatabase
from cellprx.structures import scelibent_ppu32, scelibstub_ppu32

DWORD: str = "dword"
NID_SIZE: int = 4


class EntryKind(Enum):
    FUNCTION = "function"
    VARIABLE = "variable"
    TLS_VARIABLE = "tls-variable"


@attr.s(auto_attribs=True, frozen=True)
class LibraryRecord:
    address: int
    size: int
    #: The decoded record
    fields: Container = attr.ib(repr=False)


@attr.s(auto_attribs=True, frozen=True)
class UnknownRecord:
    """A record whose size does not match the expected structure."""

    address: int
    size: int


@attr.s(auto_attribs=True, frozen=True)
class NidEntry:
    index: int
    #: Address of the NID in the NID table
    nid_slot: int
    #: Address of the matching entry in the address table
    address_slot: int
    nid: int
    #: The contents of the address table entry
    address: int


class RecordTable:
    """The records in ``[start, end)``. Each record starts with its own size,
    which is what moves the walk to the next record. Iterating the table again
    restarts the walk."""

    def __init__(
        self, database: AnalysisDatabase, start: int, end: int, struct: Struct
    ):
        self.database = database
        self.start = start
        self.end = end
        self.struct = struct

    def __iter__(self) -> Iterator[Union[LibraryRecord, UnknownRecord]]:
        expected_size = self.struct.sizeof()
        address = self.start
        while address < self.end:
            try:
                size = self.database.read_byte(address)
            except InvalidMemoryAccess:
                logger.warning(
                    f"Library table runs into unmapped memory at {address:#x}"
                )
                return
            if size == 0:
                logger.warning(f"Zero sized library record at {address:#x}, stopping")
                return

            if size != expected_size:
                yield UnknownRecord(address, size)
            else:
                try:
                    raw = self.database.get_mem(address, size)
                except InvalidMemoryAccess:
                    yield UnknownRecord(address, size)
                else:
                    yield LibraryRecord(address, size, self.struct.parse(raw))
            address += size


def iter_nid_entries(
    database: AnalysisDatabase, nid_table: int, address_table: int, count: int
) -> Iterator[NidEntry]:
    for index in range(count):
        nid_slot = nid_table + index * NID_SIZE
        address_slot = address_table + index * NID_SIZE
        yield NidEntry(
            index=index,
            nid_slot=nid_slot,
            address_slot=address_slot,
            nid=database.read_word(nid_slot),
            address=database.read_word(address_slot),
        )


@attr.s(auto_attribs=True)
class TableStats:
    exported_libraries: int = 0
    imported_libraries: int = 0
    unknown_records: int = 0
    resolved: int = 0
    unresolved: int = 0


class LibraryTableWalker:
    """Resolves NIDs of the import and export tables, names the objects they
    reference and declares the tables' layout to the analysis database."""

    database: AnalysisDatabase
    nids: NidDatabase
    stats: TableStats

    def __init__(self, database: AnalysisDatabase, nids: NidDatabase):
        self.database = database
        self.nids = nids
        self.stats = TableStats()

    def _library_name(self, pointer: int) -> Optional[str]:
        if not pointer:
            return None
        try:
            return self.database.read_cstring(pointer)
        except InvalidMemoryAccess:
            logger.warning(f"Library name at {pointer:#x} is not mapped")
            return None

    def _resolve(self, library: Optional[str], nid: int) -> Optional[str]:
        if library is None:
            return None
        name = self.nids.lookup(library, nid)
        if name is None:
            logger.debug(f"Unknown NID {nid:#010x} of {library}")
            self.stats.unresolved += 1
        else:
            self.stats.resolved += 1
        return name

    def _declare_slots(self, entry: NidEntry):
        self.database.declare_typed_record(entry.nid_slot, NID_SIZE, DWORD)
        self.database.declare_typed_record(entry.address_slot, NID_SIZE, DWORD)

    def load_exports(self, start: int, end: int):
        logger.info("Loading exports...")
        database = self.database
        # A module without the table has both bounds at 0
        if start or end:
            database.define_name(start - 4, "__begin_of_section_lib_ent")
            database.define_name(end, "__end_of_section_lib_ent")

        for record in RecordTable(database, start, end, scelibent_ppu32):
            if isinstance(record, UnknownRecord):
                logger.warning(
                    f"Unknown export structure at {record.address:#x} "
                    f"(size {record.size:#x})"
                )
                self.stats.unknown_records += 1
                continue
            self.stats.exported_libraries += 1
            self._load_export_record(record)

    def _load_export_record(self, record: LibraryRecord):
        database = self.database
        fields = record.fields
        database.declare_typed_record(record.address, record.size, "_scelibent_ppu32")

        library = self._library_name(fields.libname)
        if library is None:
            database.define_name(fields.nidtable, "_NONAMEnid_table")
            database.define_name(fields.addtable, "_NONAMEentry_table")
        else:
            database.define_name(fields.libname, f"_{library}_str")
            database.define_name(fields.nidtable, f"__{library}_Functions_NID_table")
            database.define_name(fields.addtable, f"__{library}_Functions_table")

        if not fields.nidtable or not fields.addtable:
            return

        nfunc = fields.c.nfunc
        count = nfunc + fields.c.nvar + fields.c.ntlsvar
        entries = iter_nid_entries(database, fields.nidtable, fields.addtable, count)
        try:
            for entry in entries:
                try:
                    self._load_export_entry(library, entry, entry.index < nfunc)
                except InvalidMemoryAccess as error:
                    logger.warning(
                        f"Export #{entry.index} of {library} ({entry.nid:#010x}) "
                        f"references unmapped memory {error}"
                    )
                self._declare_slots(entry)
        except InvalidMemoryAccess as error:
            logger.warning(f"Export table of {library} is truncated: {error}")

    def _load_export_entry(
        self, library: Optional[str], entry: NidEntry, is_function: bool
    ):
        if library is None:
            return
        database = self.database
        name = self._resolve(library, entry.nid)
        if name is not None:
            database.annotate(entry.nid_slot, name)
            database.define_name(entry.address, name)
        if not is_function:
            return
        # Exported functions are described by an OPD entry: the address table
        # points at the descriptor, whose first word is the code address
        code = database.read_word(entry.address)
        if name is not None:
            database.define_name(code, f".{name}")
        database.mark_code(code)

    def load_imports(self, start: int, end: int):
        logger.info("Loading imports...")
        database = self.database
        # A module without the table has both bounds at 0
        if start or end:
            database.define_name(start - 4, "__begin_of_section_lib_stub")
            database.define_name(end, "__end_of_section_lib_stub")

        for record in RecordTable(database, start, end, scelibstub_ppu32):
            if isinstance(record, UnknownRecord):
                logger.warning(
                    f"Unknown import structure at {record.address:#x} "
                    f"(size {record.size:#x})"
                )
                self.stats.unknown_records += 1
                continue
            self.stats.imported_libraries += 1
            self._load_import_record(record)

    def _load_import_record(self, record: LibraryRecord):
        database = self.database
        fields = record.fields
        database.declare_typed_record(record.address, record.size, "_scelibstub_ppu32")

        library = self._library_name(fields.libname)
        if library is None:
            database.define_name(fields.func_nidtable, "_NONAMEnid_table")
            database.define_name(fields.func_table, "_NONAMEstub_table")
        else:
            database.define_name(record.address, f"_{library}_0001_stub_head")
            database.define_name(fields.libname, f"_{library}_stub_str")
            database.define_name(fields.libname - 4, f"_sce_package_version_{library}")

        tables = [
            (
                EntryKind.FUNCTION,
                fields.func_nidtable,
                fields.func_table,
                fields.c.nfunc,
            ),
            (EntryKind.VARIABLE, fields.var_nidtable, fields.var_table, fields.c.nvar),
            (
                EntryKind.TLS_VARIABLE,
                fields.tls_nidtable,
                fields.tls_table,
                fields.c.ntlsvar,
            ),
        ]
        for kind, nid_table, address_table, count in tables:
            if not nid_table or not address_table:
                continue
            try:
                entries = iter_nid_entries(database, nid_table, address_table, count)
                for entry in entries:
                    self._load_import_entry(library, kind, entry)
                    self._declare_slots(entry)
            except InvalidMemoryAccess as error:
                logger.warning(
                    f"Imported {kind.value} table of {library} is truncated: {error}"
                )

    def _load_import_entry(
        self, library: Optional[str], kind: EntryKind, entry: NidEntry
    ):
        name = self._resolve(library, entry.nid)
        if name is None:
            return
        database = self.database
        database.annotate(entry.nid_slot, name)
        if kind is EntryKind.FUNCTION:
            # The table slot is what the call stub loads the target from; the
            # target itself is the import
            database.define_name(entry.address_slot, f"{name}.stub_entry")
            database.define_name(entry.address, f".{name}")
            database.register_import_binding(library, entry.address, f".{name}")
        else:
            database.define_name(entry.address_slot, name)
