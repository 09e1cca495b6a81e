"""
Incremental tailer for append-only remote log files.

Each poll fetches only the bytes appended since the cursor. A shrinking file
is treated as rotated and read again from the start. The first observation of
a file without a persisted cursor only records its size, so a freshly started
tracker does not replay the file's history.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .cursor_store import CursorStore, LogCursor
from .line_parser import clean_line
from .transport import FileTransport, RemoteFileNotFound

logger = logging.getLogger(__name__)


@dataclass
class TailResult:
    data: bytes = b''
    rotated: bool = False


class IncrementalTailer:
    """Tails a set of labelled files through a transport."""

    def __init__(self, transport: FileTransport, files: Dict[str, str],
                 cursor_store: Optional[CursorStore] = None) -> None:
        """
        Initialize the tailer.

        Args:
            transport: Transport used for stat and byte-range fetches.
            files: Mapping of file label to remote path.
            cursor_store: Optional store to resume from and persist to.
        """
        self.transport = transport
        self.cursor_store = cursor_store
        self.cursors: Dict[str, LogCursor] = {
            label: LogCursor(label=label, file_path=path) for label, path in files.items()
        }

    def restore(self) -> int:
        """
        Resume cursors from the cursor store.

        Returns:
            Number of cursors restored.
        """
        if self.cursor_store is None:
            return 0

        restored = 0
        for label, saved in self.cursor_store.load().items():
            cursor = self.cursors.get(label)
            if cursor is None:
                continue
            if saved.get('file_path') and saved['file_path'] != cursor.file_path:
                logger.info(f"Cursor for '{label}' belongs to {saved['file_path']}, "
                            f"now watching {cursor.file_path}; starting fresh")
                continue
            cursor.byte_offset = saved['byte_offset']
            cursor.initialized = True
            restored += 1
            logger.debug(f"Resuming '{label}' at byte {cursor.byte_offset}")
        return restored

    def poll(self, label: str) -> TailResult:
        """
        Fetch bytes appended to a file since the last poll.

        Args:
            label: File label.

        Returns:
            The new bytes and whether a rotation was detected.

        Raises:
            RemoteFileNotFound: If the file does not exist yet.
            TransportError: On any other transport failure. The cursor is not advanced.
        """
        cursor = self.cursors[label]
        try:
            size = self.transport.stat(cursor.file_path)['size']
        except RemoteFileNotFound:
            if not cursor.initialized:
                # Everything written once the file appears is new.
                cursor.initialized = True
                logger.info(f"{label} does not exist yet, will read it from the start once created")
            raise

        if not cursor.initialized:
            cursor.byte_offset = size
            cursor.initialized = True
            logger.info(f"Started watching {label} at byte {size}")
            return TailResult()

        rotated = False
        if size < cursor.byte_offset:
            logger.info(f"{label} shrank from {cursor.byte_offset} to {size} bytes, treating as rotated")
            cursor.reset()
            rotated = True

        if size == cursor.byte_offset:
            return TailResult(rotated=rotated)

        data = self.transport.fetch_range(cursor.file_path, cursor.byte_offset, size)
        cursor.byte_offset = size
        return TailResult(data=data, rotated=rotated)

    def feed(self, label: str, data: bytes) -> List[str]:
        """
        Split a chunk into complete lines, carrying an unterminated tail over.

        Args:
            label: File label whose partial buffer is used.
            data: Newly fetched bytes.

        Returns:
            Complete, cleaned, non-empty lines in file order.
        """
        cursor = self.cursors[label]
        if not data:
            return []

        pieces = (cursor.partial + data).split(b'\n')
        cursor.partial = pieces.pop()

        lines = []
        for piece in pieces:
            line = clean_line(piece.decode('utf-8', errors='replace'))
            if line:
                lines.append(line)
        return lines

    def poll_lines(self, label: str) -> List[str]:
        """Poll a file and return its new complete lines."""
        return self.feed(label, self.poll(label).data)

    def read_whole(self, path: str) -> str:
        """Read a small auxiliary file in full (e.g. the player id map)."""
        return self.transport.read_whole(path).decode('utf-8', errors='replace')

    def save(self) -> bool:
        """Persist cursors. Returns True if the cursor file was written."""
        if self.cursor_store is None:
            return False
        return self.cursor_store.save(self.cursors)
