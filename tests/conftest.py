import pytest

from cellprx.database import MemoryDatabase
from cellprx.nids import NidDatabase

NIDS_XML = """<?xml version="1.0"?>
<IdaInfoDatabase>
  <Group name="cellSysutil">
    <Entry id="0x0bae8772" name="cellVideoOutConfigure"/>
    <Entry id="0x887572d5" name="cellVideoOutGetState"/>
    <Entry id="0x11111111" name="g_sysutil_state"/>
    <Entry id="0x22222222" name="g_sysutil_tls"/>
  </Group>
  <Group name="cellTest">
    <Entry id="0x12345678" name="cellTestStart"/>
    <Entry id="0x9abcdef0" name="cellTestCounter"/>
  </Group>
</IdaInfoDatabase>
"""


@pytest.fixture
def nids() -> NidDatabase:
    return NidDatabase.from_string(NIDS_XML)


@pytest.fixture
def database() -> MemoryDatabase:
    return MemoryDatabase()
