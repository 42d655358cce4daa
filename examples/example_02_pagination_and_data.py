"""Example 02: Cursor Pagination and Payload Storage.

This example demonstrates:
- Following opaque cursors until a query is exhausted
- Stable ordering of messages that share a timestamp
- Keeping large payloads in a data store instead of inline
"""

import io
import logging

from messagestore import Pagination, message_cid, open_data_store, open_message_store

TENANT = "did:example:bob"


def main():
    """Run the pagination example."""
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    print("=" * 80)
    print("MESSAGESTORE PAGINATION EXAMPLE")
    print("=" * 80)

    with open_message_store("sqlite:///:memory:") as store:
        # Half of the messages share a timestamp; ties are ordered by messageCid.
        for n in range(10):
            timestamp = f"2024-01-01T00:00:{min(n, 5):02d}.000000Z"
            message = {"recordId": f"record-{n}", "descriptor": {"nonce": n}}
            store.put(
                TENANT,
                message,
                {"messageTimestamp": timestamp, "kind": "even" if n % 2 == 0 else "odd"},
            )

        print("\nPages of 2 'even' messages:")
        cursor = None
        page = 1
        while True:
            pagination = Pagination(limit=2, cursor=cursor)
            result = store.query(TENANT, [{"kind": "even"}], None, pagination)
            print(f"  page {page}: {[m['recordId'] for m in result.messages]}")
            if result.cursor is None:
                break
            cursor = result.cursor
            page += 1

        store.clear()

    # Payloads too large to keep inline go to a data store keyed by
    # (tenant, recordId, dataCid); the message keeps only a reference.
    with open_data_store("sqlite:///:memory:") as data_store:
        payload = b"x" * 100_000
        descriptor = {"dataCid": "example-data-cid", "dataSize": len(payload)}
        message = {"recordId": "record-big", "descriptor": descriptor}

        stored = data_store.put(TENANT, "record-big", "example-data-cid", io.BytesIO(payload))
        print(f"\n✓ Stored {stored.data_size} bytes for {message_cid(message)[:16]}...")

        fetched = data_store.get(TENANT, "record-big", "example-data-cid")
        print(f"✓ Read back {fetched.data_size} bytes")
        print(f"Cleared {data_store.clear(TENANT)} payload(s)")


if __name__ == "__main__":
    main()
