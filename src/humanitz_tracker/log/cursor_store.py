"""
Cursor store for the incremental tailer.

Persists how far each watched file has been consumed, so a restarted process
resumes where it left off instead of replaying or skipping events.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from ..base import JSONStateFile

logger = logging.getLogger(__name__)


@dataclass
class LogCursor:
    """Read position in one watched file."""
    label: str
    file_path: str
    byte_offset: int = 0
    initialized: bool = False
    partial: bytes = b''

    @property
    def committed_offset(self) -> int:
        """Offset of the end of the last complete line handed to the parser."""
        return max(0, self.byte_offset - len(self.partial))

    def reset(self) -> None:
        """Start over from the beginning of a rotated file."""
        self.byte_offset = 0
        self.partial = b''


class CursorStore:
    """
    JSON file of ``{label: {byte_offset, file_path}, saved_at}``.

    Writes are skipped when no committed offset changed since the last write.
    """

    SAVED_AT_KEY = 'saved_at'

    def __init__(self, file_path: str) -> None:
        self.state_file = JSONStateFile(file_path)
        self._last_written: Optional[Dict[str, Any]] = None

    def load(self) -> Dict[str, Dict[str, Any]]:
        """
        Read persisted cursors.

        Returns:
            Mapping of file label to ``{'byte_offset': int, 'file_path': str or None}``.
            Malformed entries are skipped; a malformed file yields an empty mapping.
        """
        data = self.state_file.load({}, validate=lambda d: isinstance(d, dict))
        cursors = {}
        for label, entry in data.items():
            if label == self.SAVED_AT_KEY:
                continue
            offset = entry.get('byte_offset') if isinstance(entry, dict) else None
            if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
                logger.warning(f"Ignoring invalid cursor entry for '{label}': {entry!r}")
                continue
            cursors[label] = {'byte_offset': offset, 'file_path': entry.get('file_path')}

        self._last_written = dict(cursors) if cursors else None
        if cursors:
            logger.info(f"Restored {len(cursors)} log cursor(s) from {self.state_file.file_path}")
        return cursors

    def save(self, cursors: Dict[str, LogCursor]) -> bool:
        """
        Persist initialized cursors if anything changed.

        Args:
            cursors: Cursors keyed by file label.

        Returns:
            True if the file was written.
        """
        snapshot = {
            label: {'byte_offset': cursor.committed_offset, 'file_path': cursor.file_path}
            for label, cursor in cursors.items()
            if cursor.initialized
        }
        if not snapshot or snapshot == self._last_written:
            return False

        document = dict(snapshot)
        document[self.SAVED_AT_KEY] = datetime.now(timezone.utc).isoformat()
        self.state_file.write(document)
        self._last_written = snapshot
        return True
