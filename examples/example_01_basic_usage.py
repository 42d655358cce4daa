"""Example 01: Basic Usage - Messagestore Fundamentals.

This example demonstrates the fundamental operations:
- Opening a message store from a storage URI
- Storing messages with their index attributes using store.put()
- Point lookups by messageCid using store.get()
- Filtered, sorted queries using store.query()
- Deleting and clearing a tenant's messages
"""

from messagestore import Pagination, SortDirection, message_cid, open_message_store
from messagestore.sorting import MessageSort

TENANT = "did:example:alice"


def make_message(n: int, method: str, published: bool) -> dict:
    """A records-style message; only the descriptor matters to the store."""
    timestamp = f"2024-03-0{n}T12:00:00.000000Z"
    return {
        "recordId": f"record-{n}",
        "descriptor": {
            "interface": "Records",
            "method": method,
            "messageTimestamp": timestamp,
            "dateCreated": timestamp,
            "published": published,
        },
    }


def indexes_for(message: dict) -> dict:
    descriptor = message["descriptor"]
    return {
        "interface": descriptor["interface"],
        "method": descriptor["method"],
        "messageTimestamp": descriptor["messageTimestamp"],
        "dateCreated": descriptor["dateCreated"],
        "published": descriptor["published"],
        "tag.labels": ["example", descriptor["method"].lower()],
    }


def main():
    """Run the basic usage example."""
    print("=" * 80)
    print("MESSAGESTORE BASIC USAGE EXAMPLE")
    print("=" * 80)

    # Step 1: Open the store
    # Stores are context managers; the backend is chosen by URI.
    with open_message_store("sqlite:///:memory:") as store:
        print(f"\n✓ Store opened: {store.storage_info()}")

        # Step 2: Store messages
        messages = [
            make_message(1, "Write", published=True),
            make_message(2, "Write", published=False),
            make_message(3, "Delete", published=True),
        ]
        for message in messages:
            store.put(TENANT, message, indexes_for(message))
        print(f"\n✓ Stored {len(messages)} messages for {TENANT}")

        # Step 3: Point lookup
        cid = message_cid(messages[0])
        print(f"\nget({cid[:16]}...) -> {store.get(TENANT, cid)['descriptor']['method']}")

        # Step 4: Queries
        # Each filter clause is an AND of equalities; the list is an OR of clauses.
        result = store.query(TENANT, [{"method": "Write", "published": True}, {"method": "Delete"}])
        print(f"\nWrite+published OR Delete: {[m['recordId'] for m in result.messages]}")

        newest_first = MessageSort(date_created=SortDirection.DESCENDING)
        result = store.query(TENANT, [], newest_first, Pagination(limit=2))
        print(f"Newest two: {[m['recordId'] for m in result.messages]}")
        print(f"More available: {result.cursor is not None}")

        result = store.query(TENANT, [{"tag.labels": "delete"}])
        print(f"Tagged 'delete': {[m['recordId'] for m in result.messages]}")

        # Step 5: Delete and clear
        store.delete(TENANT, cid)
        print(f"\nAfter delete, get -> {store.get(TENANT, cid)}")
        print(f"Cleared {store.clear(TENANT)} remaining message(s)")


if __name__ == "__main__":
    main()
