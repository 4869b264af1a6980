"""Loader for PlayStation 3 PPU executables and PRX modules.

Maps an image into an analysis database, relocates it, and names its imports
and exports by resolving their NIDs.
"""

from cellprx.database import AnalysisDatabase, MemoryDatabase
from cellprx.exceptions import (
    CellPrxException,
    InvalidMemoryAccess,
    LoaderError,
    NidDatabaseError,
    UnsupportedImage,
)
from cellprx.image import ExecutableImage, identify_image
from cellprx.loader import CellLoader, LoadOptions, LoadResult, Variant, load_file
from cellprx.nids import NidDatabase

__version__ = "0.1.0"
