import pytest

from builders import (
    ALLOC_WRITE,
    NULL_SECTION,
    Blob,
    make_image,
    mapped_database,
    section,
    segment,
)
from cellprx.image import ET_EXEC, SegmentType
from cellprx.loader.base import LoadContext, Variant
from cellprx.loader.variant import detect_variant, module_info_address, resolve_gp


def test_detect_executable():
    assert detect_variant(make_image(ET_EXEC)) is Variant.EXECUTABLE
    assert not Variant.EXECUTABLE.is_prx


def test_detect_modern_prx():
    image = make_image(segments=[segment(0, 0, 0x100, 0x100)])
    assert detect_variant(image) is Variant.MODERN_PRX
    assert Variant.MODERN_PRX.is_prx


def test_detect_legacy_prx():
    image = make_image(
        segments=[
            segment(0, 0, 0x100, 0x100),
            segment(1, 0, 0x200, 0x10, p_type=SegmentType.PT_SCE_SEGSYM),
        ]
    )
    assert detect_variant(image) is Variant.LEGACY_PRX
    assert Variant.LEGACY_PRX.is_prx


def test_executable_gp_is_second_word_of_entry_descriptor():
    contents = Blob(0x10)
    contents.u32(0x0, 0x1234)
    contents.u32(0x4, 0x4321)
    database = mapped_database({0x1000: bytes(contents)})
    image = make_image(ET_EXEC, entry=0x1000)

    assert resolve_gp(Variant.EXECUTABLE, image, database, LoadContext()) == 0x4321


def test_executable_gp_with_unmapped_entry():
    database = mapped_database({0x1000: bytes(0x10)})
    image = make_image(ET_EXEC, entry=0x8000)

    assert resolve_gp(Variant.EXECUTABLE, image, database, LoadContext()) == 0


@pytest.mark.parametrize("base", [0, 0x10000])
def test_legacy_gp_is_toc_section(base):
    image = make_image(
        sections=[NULL_SECTION, section(1, ".toc", 0x8000, 0x100, 0x100, ALLOC_WRITE)]
    )
    context = LoadContext(base)

    gp_value = resolve_gp(Variant.LEGACY_PRX, image, mapped_database({}), context)

    assert gp_value == base + 0x8000


def test_legacy_gp_without_toc_section():
    image = make_image(sections=[NULL_SECTION])
    gp_value = resolve_gp(Variant.LEGACY_PRX, image, mapped_database({}), LoadContext())
    assert gp_value == 0


@pytest.mark.parametrize("base", [0, 0x10000])
def test_modern_gp_is_read_from_module_info(base):
    # The module info is at file offset 0x110, 0x10 bytes into the segment
    image = make_image(segments=[segment(0, 0, 0x100, 0x100, paddr=0x110)])
    contents = Blob(0x100)
    contents.u32(0x10 + 0x20, 0x1F0)
    database = mapped_database({base: bytes(contents)})
    context = LoadContext(base)

    assert module_info_address(image, context) == base + 0x10
    assert resolve_gp(Variant.MODERN_PRX, image, database, context) == base + 0x1F0


def test_modern_gp_left_unset():
    image = make_image(segments=[segment(0, 0, 0x100, 0x100)])
    database = mapped_database({0x10000: bytes(0x100)})

    gp_value = resolve_gp(Variant.MODERN_PRX, image, database, LoadContext(0x10000))

    assert gp_value == 0
