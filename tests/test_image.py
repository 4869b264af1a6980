from builders import ALLOC_WRITE, NULL_SECTION, Blob, make_image, section, segment
from cellprx.image import ET_EXEC, SectionType, SegmentType
from cellprx.structures import (
    Elf64_Rela,
    describe_fields,
    offsetof,
    scelibent_ppu32,
    scelibstub_ppu32,
    scemoduleinfo_ppu32,
    sys_process_param_t,
    sys_process_prx_info_t,
)


def image():
    blob = Blob(0x200)
    blob.put(0x100, b"data")
    sections = [
        NULL_SECTION,
        section(1, ".data", 0x1000, 0x100, 0x10, ALLOC_WRITE),
        section(2, ".bss", 0x1010, 0x110, 0x10, ALLOC_WRITE, SectionType.SHT_NOBITS),
        section(3, ".data", 0x2000, 0x180, 0x10, ALLOC_WRITE),
    ]
    segments = [
        segment(0, 0x1000, 0x100, 0x20),
        segment(1, 0, 0x180, 0x18, p_type=SegmentType.PT_SCE_PPURELA),
        segment(2, 0, 0x198, 0x18, p_type=SegmentType.PT_SCE_PPURELA),
    ]
    return make_image(segments=segments, sections=sections, data=bytes(blob))


def test_section_lookup():
    prx = image()
    assert prx.section_by_name(".data").index == 1
    assert prx.section_by_name(".toc") is None
    assert prx.section_by_type(SectionType.SHT_NOBITS).name == ".bss"
    assert prx.section_by_type(SectionType.SHT_RELA) is None


def test_segments_by_type():
    prx = image()
    relocation_segments = prx.segments_by_type(SegmentType.PT_SCE_PPURELA)
    assert [descriptor.index for descriptor in relocation_segments] == [1, 2]


def test_contents():
    prx = image()
    assert prx.section_data(prx.sections[1])[:4] == b"data"
    assert prx.section_data(prx.sections[2]) == b""
    assert prx.segment_data(prx.segments[0])[:4] == b"data"
    assert prx.read(0x1F0, 0x20) == bytes(0x10)


def test_record_layouts():
    assert Elf64_Rela.sizeof() == 0x18
    assert scemoduleinfo_ppu32.sizeof() == 0x34
    assert scelibstub_ppu32.sizeof() == 0x2C
    assert scelibent_ppu32.sizeof() == 0x1C
    assert sys_process_param_t.sizeof() == 0x24
    assert sys_process_prx_info_t.sizeof() == 0x28
    assert offsetof(scemoduleinfo_ppu32, "gp_value") == 0x20
    assert offsetof(scelibstub_ppu32, "libname") == 0x10
    assert describe_fields(scelibent_ppu32)[-1] == ("addtable", 0x18, 4)


def test_image_type():
    prx = make_image()
    assert prx.is_prx and not prx.is_exec
    executable = make_image(ET_EXEC)
    assert executable.is_exec and not executable.is_prx
    other = make_image(e_type=1)
    assert not other.is_exec and not other.is_prx
