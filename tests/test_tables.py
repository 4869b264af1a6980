from builders import Blob, libent, libstub, mapped_database
from cellprx.database import ImportBinding
from cellprx.loader.tables import (
    LibraryRecord,
    LibraryTableWalker,
    RecordTable,
    UnknownRecord,
)
from cellprx.structures import scelibstub_ppu32

STUBS = 0x1000
ENTS = 0x2000


def import_database(
    nvar=0, ntlsvar=0, libname=STUBS + 0x80, stub_offset=0, marker=None
):
    """A library stub table for cellSysutil, importing two functions (one of
    them unknown), a variable and a TLS variable."""
    blob = Blob(0x200)
    if marker is not None:
        blob.put(0x0, bytes([marker]))
    blob.put(
        stub_offset,
        libstub(
            nfunc=2,
            nvar=nvar,
            ntlsvar=ntlsvar,
            libname=libname,
            func_nidtable=STUBS + 0x90,
            func_table=STUBS + 0xA0,
            var_nidtable=STUBS + 0xB0,
            var_table=STUBS + 0xB8,
            tls_nidtable=STUBS + 0xC0,
            tls_table=STUBS + 0xC8,
        ),
    )
    blob.u32(0x7C, 0x00010000)
    blob.put(0x80, b"cellSysutil\0")
    blob.u32(0x90, 0x0BAE8772)
    blob.u32(0x94, 0xDEADBEEF)
    blob.u32(0xA0, 0x1100)
    blob.u32(0xA4, 0x1110)
    blob.u32(0xB0, 0x11111111)
    blob.u32(0xB8, 0x1120)
    blob.u32(0xC0, 0x22222222)
    blob.u32(0xC8, 0x1130)
    return mapped_database({STUBS: bytes(blob)})


def test_record_table_walk():
    database = import_database(stub_offset=0x20, marker=0x20)
    records = list(RecordTable(database, STUBS, STUBS + 0x4C, scelibstub_ppu32))

    assert records[0] == UnknownRecord(STUBS, 0x20)
    assert isinstance(records[1], LibraryRecord)
    assert records[1].address == STUBS + 0x20
    assert records[1].fields.c.nfunc == 2
    assert len(records) == 2


def test_record_table_stops_on_zero_size():
    database = import_database(stub_offset=0x20)
    assert list(RecordTable(database, STUBS, STUBS + 0x4C, scelibstub_ppu32)) == []


def test_record_table_stops_on_unmapped_memory():
    database = import_database()
    table = RecordTable(database, STUBS - 0x100, STUBS + 0x2C, scelibstub_ppu32)
    assert list(table) == []


def test_imports(nids):
    database = import_database()
    walker = LibraryTableWalker(database, nids)
    walker.load_imports(STUBS, STUBS + 0x2C)

    names = database.names
    assert names[STUBS - 4] == "__begin_of_section_lib_stub"
    assert names[STUBS + 0x2C] == "__end_of_section_lib_stub"
    assert names[STUBS] == "_cellSysutil_0001_stub_head"
    assert names[STUBS + 0x80] == "_cellSysutil_stub_str"
    assert names[STUBS + 0x7C] == "_sce_package_version_cellSysutil"
    assert names[STUBS + 0xA0] == "cellVideoOutConfigure.stub_entry"
    assert names[0x1100] == ".cellVideoOutConfigure"
    assert database.annotations[STUBS + 0x90] == ["cellVideoOutConfigure"]
    assert database.import_bindings == [
        ImportBinding("cellSysutil", 0x1100, ".cellVideoOutConfigure")
    ]
    assert database.typed_records[STUBS].type_id == "_scelibstub_ppu32"
    assert walker.stats.imported_libraries == 1
    assert walker.stats.resolved == 1
    assert walker.stats.unresolved == 1


def test_unknown_import_nid(nids):
    database = import_database()
    LibraryTableWalker(database, nids).load_imports(STUBS, STUBS + 0x2C)

    # Both slots are still declared, but nothing is named or bound
    assert database.typed_records[STUBS + 0x94].type_id == "dword"
    assert database.typed_records[STUBS + 0xA4].type_id == "dword"
    assert STUBS + 0xA4 not in database.names
    assert 0x1110 not in database.names
    assert all(binding.address != 0x1110 for binding in database.import_bindings)


def test_imported_variables(nids):
    database = import_database(nvar=1)
    LibraryTableWalker(database, nids).load_imports(STUBS, STUBS + 0x2C)

    assert database.names[STUBS + 0xB8] == "g_sysutil_state"
    assert database.annotations[STUBS + 0xB0] == ["g_sysutil_state"]
    assert database.typed_records[STUBS + 0xB8].type_id == "dword"
    assert len(database.import_bindings) == 1
    # TLS variables are counted separately
    assert STUBS + 0xC8 not in database.names


def test_imported_tls_variables(nids):
    database = import_database(ntlsvar=1)
    LibraryTableWalker(database, nids).load_imports(STUBS, STUBS + 0x2C)

    assert database.names[STUBS + 0xC8] == "g_sysutil_tls"
    assert STUBS + 0xB8 not in database.names


def test_import_slots_declared_once(nids):
    database = import_database()
    LibraryTableWalker(database, nids).load_imports(STUBS, STUBS + 0x2C)
    records = dict(database.typed_records)
    bindings = list(database.import_bindings)

    LibraryTableWalker(database, nids).load_imports(STUBS, STUBS + 0x2C)

    assert database.typed_records == records
    assert database.import_bindings == bindings
    assert database.annotations[STUBS + 0x90] == ["cellVideoOutConfigure"]


def test_import_without_library_name(nids):
    database = import_database(libname=0)
    walker = LibraryTableWalker(database, nids)
    walker.load_imports(STUBS, STUBS + 0x2C)

    assert database.names[STUBS + 0x90] == "_NONAMEnid_table"
    assert database.names[STUBS + 0xA0] == "_NONAMEstub_table"
    assert database.import_bindings == []
    assert database.typed_records[STUBS + 0x90].type_id == "dword"
    assert walker.stats.resolved == 0


def test_unknown_import_record_is_skipped(nids):
    database = import_database(stub_offset=0x20, marker=0x20)
    walker = LibraryTableWalker(database, nids)
    walker.load_imports(STUBS, STUBS + 0x4C)

    assert walker.stats.unknown_records == 1
    assert walker.stats.imported_libraries == 1
    assert len(database.import_bindings) == 1


def export_database(nid=0x12345678, descriptor=ENTS + 0x80):
    """A library entry table for cellTest, exporting a function and a
    variable."""
    blob = Blob(0x200)
    blob.put(
        0x0,
        libent(
            nfunc=1,
            nvar=1,
            libname=ENTS + 0x40,
            nidtable=ENTS + 0x50,
            addtable=ENTS + 0x60,
        ),
    )
    blob.put(0x40, b"cellTest\0")
    blob.u32(0x50, nid)
    blob.u32(0x54, 0x9ABCDEF0)
    blob.u32(0x60, descriptor)
    blob.u32(0x64, ENTS + 0x90)
    # Function descriptor: code address and TOC
    blob.u32(0x80, ENTS + 0x100)
    blob.u32(0x84, ENTS + 0x1F0)
    return mapped_database({ENTS: bytes(blob)})


def test_exports(nids):
    database = export_database()
    walker = LibraryTableWalker(database, nids)
    walker.load_exports(ENTS, ENTS + 0x1C)

    names = database.names
    assert names[ENTS - 4] == "__begin_of_section_lib_ent"
    assert names[ENTS + 0x1C] == "__end_of_section_lib_ent"
    assert names[ENTS + 0x40] == "_cellTest_str"
    assert names[ENTS + 0x50] == "__cellTest_Functions_NID_table"
    assert names[ENTS + 0x60] == "__cellTest_Functions_table"
    assert names[ENTS + 0x80] == "cellTestStart"
    assert names[ENTS + 0x100] == ".cellTestStart"
    assert names[ENTS + 0x90] == "cellTestCounter"
    assert database.annotations[ENTS + 0x50] == ["cellTestStart"]
    assert database.annotations[ENTS + 0x54] == ["cellTestCounter"]
    assert database.code == {ENTS + 0x100}
    assert database.typed_records[ENTS].type_id == "_scelibent_ppu32"
    assert database.typed_records[ENTS + 0x64].type_id == "dword"
    assert walker.stats.exported_libraries == 1
    assert walker.stats.resolved == 2


def test_unknown_exported_function_is_still_code(nids):
    database = export_database(nid=0xDEADBEEF)
    LibraryTableWalker(database, nids).load_exports(ENTS, ENTS + 0x1C)

    assert database.code == {ENTS + 0x100}
    assert ENTS + 0x100 not in database.names
    assert ENTS + 0x80 not in database.names


def test_exported_descriptor_out_of_image(nids):
    database = export_database(descriptor=0x9000)
    LibraryTableWalker(database, nids).load_exports(ENTS, ENTS + 0x1C)

    assert database.names[0x9000] == "cellTestStart"
    assert database.code == set()
    assert database.typed_records[ENTS + 0x50].type_id == "dword"
    assert database.typed_records[ENTS + 0x60].type_id == "dword"
    # The walk goes on with the next entry
    assert database.names[ENTS + 0x90] == "cellTestCounter"


def test_missing_tables_are_not_named(nids):
    database = mapped_database({0: bytes(0x10)})
    walker = LibraryTableWalker(database, nids)
    walker.load_exports(0, 0)
    walker.load_imports(0, 0)

    assert database.names == {}
    assert walker.stats.exported_libraries == 0
    assert walker.stats.imported_libraries == 0


def test_empty_tables_are_still_bounded(nids):
    database = mapped_database({STUBS: bytes(0x10)})
    LibraryTableWalker(database, nids).load_imports(STUBS + 0x8, STUBS + 0x8)

    assert database.names == {
        STUBS + 0x4: "__begin_of_section_lib_stub",
        STUBS + 0x8: "__end_of_section_lib_stub",
    }
