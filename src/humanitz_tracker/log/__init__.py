"""
Log ingestion: transports, cursors, tailing and line parsing.
"""

from .transport import FileTransport, LocalFileTransport, TransportError, RemoteFileNotFound
from .cursor_store import CursorStore, LogCursor
from .tailer import IncrementalTailer, TailResult
from .line_parser import LineParser, parse_id_map, is_player_source

__all__ = [
    'FileTransport', 'LocalFileTransport', 'TransportError', 'RemoteFileNotFound',
    'CursorStore', 'LogCursor',
    'IncrementalTailer', 'TailResult',
    'LineParser', 'parse_id_map', 'is_player_source',
]
