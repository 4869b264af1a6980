from cellprx.loader.base import LoadContext, LoadOptions, Variant
from cellprx.loader.cell import CellLoader, LoadResult, load_file

__all__ = [
    "CellLoader",
    "LoadContext",
    "LoadOptions",
    "LoadResult",
    "Variant",
    "load_file",
]
