"""
Integration tests — filters, ordering and limits against a real backend.
"""

import pytest

from firestore_sync_odm import FirestoreOperators, InvalidQueryError

from .models import FoodItem, Price

pytestmark = pytest.mark.asyncio


async def _seed_menu():
    items = [
        FoodItem(name="Flan", category="dessert", price=Price(amount=3.0), tags=["sweet"]),
        FoodItem(name="Churros", category="dessert", price=Price(amount=2.0), tags=["sweet", "fried"]),
        FoodItem(name="Taco", category="main", price=Price(amount=4.0), tags=["spicy"]),
    ]
    for item in items:
        await item.write()
    return items


async def test_filter_and_order(sync_context):
    await _seed_menu()
    result = await (
        FoodItem.query()
        .where(FoodItem.category == "dessert")
        .order_by("price.amount")
        .execute()
    )
    assert [item.name for item in result] == ["Churros", "Flan"]


async def test_array_contains_and_limit(sync_context):
    await _seed_menu()
    result = await FoodItem.query().where(FoodItem.tags.array_contains("sweet")).limit(1).execute()
    assert len(result) == 1


async def test_in_operator(sync_context):
    await _seed_menu()
    result = await FoodItem.query().where("name", FirestoreOperators.IN, ["Taco", "Flan"]).execute()
    assert sorted(item.name for item in result) == ["Flan", "Taco"]


async def test_first_descending(sync_context):
    await _seed_menu()
    result = await FoodItem.query().order_by("price.amount", descending=True).first()
    assert result.value.name == "Taco"


async def test_invalid_query(sync_context):
    result = await FoodItem.query().where("colour", "==", "red").execute()
    assert isinstance(result.error, InvalidQueryError)
