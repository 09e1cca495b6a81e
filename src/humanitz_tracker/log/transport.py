"""
File transports used by the tailer.

A transport exposes two operations, ``stat(path)`` and
``fetch_range(path, start, end)``. Both raise ``RemoteFileNotFound`` when the
file does not exist yet and ``TransportError`` for anything else.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, Any

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """The remote side could not be reached or refused the request."""


class RemoteFileNotFound(TransportError):
    """The requested file does not exist (yet) on the remote side."""


class FileTransport(ABC):
    """Interface for byte-range access to remote log files."""

    @abstractmethod
    def stat(self, path: str) -> Dict[str, Any]:
        """
        Return file metadata.

        Args:
            path: Remote file path.

        Returns:
            A dictionary with at least a ``size`` key (bytes).

        Raises:
            RemoteFileNotFound: If the file does not exist.
            TransportError: On any other failure.
        """

    @abstractmethod
    def fetch_range(self, path: str, start: int, end: int) -> bytes:
        """
        Fetch the half-open byte range ``[start, end)`` of a file.

        Raises:
            RemoteFileNotFound: If the file does not exist.
            TransportError: On any other failure.
        """

    def read_whole(self, path: str) -> bytes:
        """Fetch a complete (small) file."""
        size = self.stat(path)['size']
        if size == 0:
            return b''
        return self.fetch_range(path, 0, size)


class LocalFileTransport(FileTransport):
    """Transport over the local filesystem, rooted at a base directory."""

    def __init__(self, root: str = '.') -> None:
        self.root = os.path.abspath(os.path.expanduser(root))

    def _resolve(self, path: str) -> str:
        # Remote-style absolute paths are interpreted relative to the root
        return os.path.join(self.root, path.lstrip('/\\'))

    def stat(self, path: str) -> Dict[str, Any]:
        local_path = self._resolve(path)
        try:
            return {'size': os.stat(local_path).st_size}
        except FileNotFoundError as e:
            raise RemoteFileNotFound(f"{path} not found") from e
        except OSError as e:
            raise TransportError(f"Cannot stat {path}: {e}") from e

    def fetch_range(self, path: str, start: int, end: int) -> bytes:
        local_path = self._resolve(path)
        try:
            with open(local_path, 'rb') as f:
                f.seek(start)
                return f.read(max(0, end - start))
        except FileNotFoundError as e:
            raise RemoteFileNotFound(f"{path} not found") from e
        except OSError as e:
            raise TransportError(f"Cannot read {path}: {e}") from e
