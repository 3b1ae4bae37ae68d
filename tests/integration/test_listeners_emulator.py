"""
Integration tests — snapshot listeners.

Snapshots arrive on the SDK's watch thread and are handed to the event
loop, so the tests poll until the expected update shows up.
"""

import asyncio

import pytest

from firestore_sync_odm import NotFoundError

from .models import FoodItem

pytestmark = pytest.mark.asyncio


async def _wait_for(predicate, timeout=10.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("listener update did not arrive in time")
        await asyncio.sleep(0.05)


async def test_listen_to_changes_and_delete(sync_context):
    item = FoodItem(name="Taco")
    await item.write()

    updates = []
    handle = await FoodItem.listen(item.id, updates.append)
    await _wait_for(lambda: len(updates) >= 1)
    assert updates[0].value.name == "Taco"

    await item.field("name").set("Burrito")
    await _wait_for(lambda: updates[-1].ok and updates[-1].value.name == "Burrito")

    await item.delete()
    await _wait_for(lambda: isinstance(updates[-1].error, NotFoundError))

    handle.cancel()
    assert handle.cancelled


async def test_context_close_stops_listeners(sync_context):
    item = FoodItem(name="Taco")
    await item.write()
    handle = await FoodItem.listen(item.id, lambda result: None, key="screen")
    assert "screen" in sync_context.listeners
    sync_context.close()
    assert handle.cancelled
