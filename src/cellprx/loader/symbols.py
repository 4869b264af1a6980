"""The image's own symbol table is applied last, so that its names always win
over the names derived from NIDs."""

from loguru import logger

from cellprx.database import AnalysisDatabase
from cellprx.image import SHN_ABS, STT_FILE, STT_FUNC, STT_OBJECT, ExecutableImage
from cellprx.loader.base import LoadContext, Variant


def apply_symbols(
    image: ExecutableImage,
    database: AnalysisDatabase,
    variant: Variant,
    context: LoadContext,
) -> int:
    """Name the objects and functions of the symbol table. Returns the number
    of symbols applied."""
    if not image.symbols:
        return 0
    logger.info("Applying symbols...")

    sections = image.sections
    applied = 0
    for symbol in image.symbols:
        if symbol.shndx == SHN_ABS or symbol.shndx >= len(sections):
            continue
        section = sections[symbol.shndx]
        if not section.allocatable:
            continue

        value = symbol.value
        # Symbols of a PRX are relative to their section. An executable's
        # sections are already at their final addresses.
        if variant.is_prx:
            value += context.rebase(section.address)

        if symbol.type == STT_OBJECT:
            database.define_name(value, symbol.name)
        elif symbol.type == STT_FILE:
            database.annotate(value, f"Source File: {symbol.name}")
        elif symbol.type == STT_FUNC:
            database.define_name(value, symbol.name)
            database.mark_code(value)
        else:
            continue
        applied += 1

    logger.debug(f"Applied {applied} of {len(image.symbols)} symbols")
    return applied
