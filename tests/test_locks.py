import asyncio

import pytest

from ticketbox.tickets.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialised():
    locks = KeyedLock()
    events: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold("ticket"):
            events.append(f"{name}:start")
            await asyncio.sleep(0)
            events.append(f"{name}:end")

    await asyncio.gather(worker("a"), worker("b"))

    assert events == ["a:start", "a:end", "b:start", "b:end"]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_keys_do_not_block():
    locks = KeyedLock()

    async with locks.hold("one"):
        async with locks.hold("two"):
            assert len(locks) == 2

    assert len(locks) == 0
