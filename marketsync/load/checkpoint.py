"""
Cursor persistence.

One row per sync stream in ``sync_cursor_state`` holding the latest
high-water mark. An absent row (or a row with every field NULL) means the
next run is a full initial sync.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from marketsync.extract.pagination import (
    CompositeCursor,
    OffsetCursor,
    PaginationState,
    TokenCursor,
)
from marketsync.utils.dates import to_iso_utc
from marketsync.utils.logging_utils import log_progress


@dataclass(frozen=True)
class CheckpointState:
    stream: str
    last_timestamp: Optional[str] = None
    last_id: Optional[str] = None
    last_offset: Optional[int] = None

    def as_composite(self) -> CompositeCursor:
        return CompositeCursor(
            high_water_timestamp=self.last_timestamp, high_water_id=self.last_id
        )

    def as_token(self) -> TokenCursor:
        return TokenCursor(last_id=self.last_id)

    def as_offset(self) -> OffsetCursor:
        return OffsetCursor(offset=self.last_offset or 0)


class CursorStore:
    """
    Loads and saves the checkpoint of one stream.

    Args:
        db: Database providing ``query``/``execute``
        stream: Stream name, e.g. 'wb_cards'
    """

    def __init__(self, db: Any, stream: str):
        self.db = db
        self.stream = stream
        self.label = f"Checkpoint - {stream}"

    def load(self) -> Optional[CheckpointState]:
        """
        Read the stream's checkpoint.

        Returns:
            CheckpointState, or None when no checkpoint exists
        """
        rows = self.db.query(
            """
            SELECT last_timestamp, last_id, last_offset
            FROM sync_cursor_state
            WHERE stream = %s
            """,
            (self.stream,),
        )
        if not rows:
            log_progress(self.label, "No checkpoint found, running a full sync")
            return None

        row = rows[0]
        if row["last_timestamp"] is None and row["last_id"] is None and row["last_offset"] is None:
            log_progress(self.label, "Checkpoint is empty, running a full sync")
            return None

        last_timestamp = row["last_timestamp"]
        if isinstance(last_timestamp, datetime):
            last_timestamp = to_iso_utc(last_timestamp, timespec="microseconds")

        state = CheckpointState(
            stream=self.stream,
            last_timestamp=last_timestamp,
            last_id=None if row["last_id"] is None else str(row["last_id"]),
            last_offset=row["last_offset"],
        )
        log_progress(
            self.label,
            f"Retrieved checkpoint: timestamp={state.last_timestamp}, "
            f"id={state.last_id}, offset={state.last_offset}",
        )
        return state

    def save(self, cursor: PaginationState) -> bool:
        """
        Overwrite the checkpoint with the cursor reached after a committed batch.

        Cursors carrying no position (empty composite or token) are ignored.

        Returns:
            bool: True when a row was written
        """
        last_timestamp = last_id = last_offset = None
        if isinstance(cursor, CompositeCursor):
            if not cursor.high_water_timestamp or cursor.high_water_id is None:
                return False
            last_timestamp = cursor.high_water_timestamp
            last_id = str(cursor.high_water_id)
        elif isinstance(cursor, TokenCursor):
            if not cursor.last_id:
                return False
            last_id = cursor.last_id
        elif isinstance(cursor, OffsetCursor):
            last_offset = cursor.offset
        else:
            return False

        self.db.execute(
            """
            INSERT INTO sync_cursor_state (stream, last_timestamp, last_id, last_offset)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (stream) DO UPDATE SET
                last_timestamp = EXCLUDED.last_timestamp,
                last_id = EXCLUDED.last_id,
                last_offset = EXCLUDED.last_offset,
                updated_at = CURRENT_TIMESTAMP
            """,
            (self.stream, last_timestamp, last_id, last_offset),
        )
        log_progress(
            self.label,
            f"Updated checkpoint to: timestamp={last_timestamp}, id={last_id}, offset={last_offset}",
        )
        return True
