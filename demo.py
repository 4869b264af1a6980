import argparse
import os
import sys

from loguru import logger

from cellprx import LoaderError, LoadOptions, MemoryDatabase, NidDatabase, load_file

DEFAULT_NIDS = os.path.join(os.path.dirname(os.path.abspath(__file__)), "ps3.xml")


def parse_args():
    parser = argparse.ArgumentParser(
        description="Load a PS3 PPU executable or PRX and list what was recovered"
    )
    parser.add_argument("image", help="ELF or PRX file (decrypted)")
    parser.add_argument("--nids", default=DEFAULT_NIDS, help="NID database (XML)")
    parser.add_argument(
        "--base",
        type=lambda text: int(text, 16),
        default=0,
        help="Relocation base of a PRX, in hex",
    )
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args()


def dump(database: MemoryDatabase, result):
    print(f"{result.variant.value}, gp = {result.context.gp_value:#010x}")
    for region in database.regions:
        print(
            f"  {region.start:#010x}..{region.end:#010x} {region.sclass:<5} "
            f"{region.name}"
        )
    for binding in database.import_bindings:
        print(f"  import {binding.library}::{binding.name} @ {binding.address:#010x}")
    for address, entry in sorted(database.entry_points.items()):
        print(f"  entry {entry.name} @ {address:#010x}")
    print(
        f"{result.relocations.applied} relocations, "
        f"{result.tables.resolved} NIDs resolved, "
        f"{result.tables.unresolved} unresolved"
    )


if __name__ == "__main__":
    args = parse_args()
    logger.remove()
    logger.add(sys.stderr, level=args.log_level)

    try:
        nids = NidDatabase.load(args.nids)
        database = MemoryDatabase()
        result = load_file(args.image, nids, database, LoadOptions(args.base))
    except LoaderError as error:
        logger.error(str(error))
        sys.exit(1)
    dump(database, result)
