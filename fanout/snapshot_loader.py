"""
Snapshot loader: the current state of a layer as a sequence of update events.

Used to seed a freshly connected subscriber before it starts receiving live
events. The query runs on a pooled connection that is released as soon as
the rows are fetched, so a slow client never holds a database connection
while its snapshot is being sent.
"""

import logging
from typing import Any, AsyncIterator, Protocol

from fanout.events import update_event
from shared.errors import MalformedPayload
from shared.models import Layer, UpdateEvent
from shared.store import quote_table

logger = logging.getLogger("snapshot_loader")


class QueryExecutor(Protocol):
    async def execute_sql(self, sql: str, *params: Any) -> list[Any]: ...


def snapshot_query(layer: Layer) -> str:
    """SQL returning one GeoJSON feature per row of the layer's table."""
    return f"SELECT ST_AsGeoJSON(t.*) AS feature FROM {quote_table(layer.table)} t"


class SnapshotLoader:
    """
    Loads layer snapshots through a store.

    Example:
        loader = SnapshotLoader(store)
        async for event in loader.load(layer):
            subscriber.offer(encode_event(event))
    """

    def __init__(self, store: QueryExecutor):
        self.store = store

    async def load(self, layer: Layer) -> AsyncIterator[UpdateEvent]:
        """
        Yield one UpdateEvent per row of the layer's table.

        Layers without a table yield nothing. Rows whose feature can't be
        resolved are logged and skipped, like malformed live notifications.
        Call again for a fresh snapshot; a started sequence can't be restarted.
        """
        if not layer.table:
            return

        rows = await self.store.execute_sql(snapshot_query(layer))
        logger.info(f"Snapshot of '{layer.name}': {len(rows)} rows")

        skipped = 0
        for row in rows:
            try:
                event = update_event(layer, row["feature"])
            except MalformedPayload as e:
                skipped += 1
                logger.error(f"Skipping snapshot row: {e}")
                continue
            yield event
        if skipped:
            logger.warning(f"Snapshot of '{layer.name}' skipped {skipped} malformed rows")
