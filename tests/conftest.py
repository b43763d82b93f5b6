"""Shared fixtures for drive_import tests."""
from typing import Optional

import pytest
import pytest_asyncio

from drive_import.models import DiscoveredFile
from drive_import.services.fingerprint import fingerprint
from drive_import.services.store import RecordStore


def make_file(
    external_id: str,
    name: Optional[str] = None,
    size: Optional[int] = 1024,
    mime_type: Optional[str] = "application/pdf",
) -> DiscoveredFile:
    name = name if name is not None else f"{external_id}.pdf"
    return DiscoveredFile(
        external_id=external_id,
        name=name,
        url=f"https://drive.google.com/uc?id={external_id}&export=download",
        mime_type=mime_type,
        size=size,
    )


async def seed(store: RecordStore, item: DiscoveredFile, duplicate_of: Optional[str] = None) -> None:
    await store.insert_discovered(item, fingerprint(item.size, item.name, item.mime_type), duplicate_of)


class FakeClock:
    """Manual monotonic clock; ``sleep`` advances it instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest_asyncio.fixture
async def store(tmp_path):
    async with RecordStore(tmp_path / "session.db") as opened:
        yield opened


@pytest.fixture
def clock():
    return FakeClock()
