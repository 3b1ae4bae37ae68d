from functools import wraps
import os
import asyncio

from firestore_sync_odm import *

GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT")
DATABASE = os.getenv("DATABASE")


def async_decorator(f):
    """Decorator to allow calling an async function like a sync function"""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


class Price(FieldObject):
    amount: float = FirestoreField(0.0)
    currency: str = FirestoreField("USD")


class FoodItem(Document):
    class Settings:
        name = "food_items"  # Collection name

    name: str = FirestoreField("None")
    emoji: str = FirestoreField("🍕")
    category: str = FirestoreField("other")
    price: Price = FirestoreField(default_factory=Price)


@async_decorator
async def main():
    # 1. Connect (set FIRESTORE_EMULATOR_HOST to use the emulator)
    db = FirestoreDB(project_id=GOOGLE_CLOUD_PROJECT, database=DATABASE)

    # 2. Bind the models
    context = init_firestore_sync(db, [FoodItem])

    # 3. Create a few documents
    for name, emoji, amount in [("Flan", "🍮", 3.0), ("Churros", "🥖", 2.0), ("Cake", "🍰", 5.0)]:
        error = await FoodItem(name=name, emoji=emoji, category="dessert", price=Price(amount=amount)).write()
        if error:
            print("Write failed:", error)

    # 4. Query desserts, cheapest first
    desserts = await (
        FoodItem.query()
        .where(FoodItem.category == "dessert")
        .order_by("price.amount")
        .execute()
    )
    for item in desserts:
        print(item.emoji, item.name, item.price.amount)

    # 5. Update a single nested field; reverted locally if the write fails
    flan = desserts.documents[1]
    error = await flan.field("price.amount").set(3.5)
    print("Price update:", error or "ok", flan.price.amount)

    # 6. Queue several changes and send them together
    await flan.field("emoji").set("🍮", option=WriteOption.BATCH)
    await flan.field("category").set("classics", option=WriteOption.BATCH)
    print("Batch:", await flan.set_batch() or "ok")

    # 7. Listen for remote changes
    handle = await FoodItem.listen(flan.id, lambda result: print("Update:", result.value or result.error))
    await flan.field("name").set("Flan napolitano")
    await asyncio.sleep(1)
    handle.cancel()

    # 8. Read many by id (one request per group of ten ids)
    everything = await FoodItem.read_many(desserts.ids(), use_cache=False)
    print("Read", len(everything), "documents")

    for item in everything:
        await item.delete()
    context.close()


if __name__ == "__main__":
    main()
