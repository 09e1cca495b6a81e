"""
Nitrado API Client

This module provides a file transport that reads game server log files through
the Nitrado file-server API, fetching only the requested byte range.
"""

import argparse
import posixpath
import requests
import logging
from typing import Dict, Any, List, Optional
import urllib3

from ..base import TrackerTool
from ..log.transport import FileTransport, TransportError, RemoteFileNotFound

# Disable SSL warnings for servers configured with ssl_verify=false
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)

NITRADO_API_BASE_URL = "https://api.nitrado.net/services/"

HTTP_NOT_FOUND = 404
HTTP_PARTIAL_CONTENT = 206


class NitradoAPIClient(TrackerTool, FileTransport):
    """Byte-range file transport backed by the Nitrado API."""

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 session: Optional[requests.Session] = None) -> None:
        """
        Initialize the Nitrado API client.

        Args:
            config: Optional configuration dictionary.
            session: Optional requests session (a new one is created if omitted).
        """
        super().__init__(config)
        self.session = session or requests.Session()
        self._setup_client()

    def _setup_client(self) -> None:
        """Set up the API client with configuration values."""
        self.token = self.get_config('nitrado_server.api_token', '')
        self.service_id = self.get_config('nitrado_server.service_id', '')
        self.remote_base_path = self.get_config('nitrado_server.remote_base_path', '/gameserver')
        self.ssl_verify = self.get_config('nitrado_server.ssl_verify', True)

        if not self.token:
            logger.warning("No Nitrado API token provided. API calls will fail.")

        if not self.service_id:
            logger.warning("No Nitrado service ID provided. API calls will fail.")

        self.headers = {"Authorization": f"Bearer {self.token}"}
        logger.debug(f"Service ID: {self.service_id}")

    def _raise_transport_error(self, e: requests.RequestException, what: str) -> None:
        """Translate a requests exception into the transport error taxonomy."""
        response = getattr(e, 'response', None)
        if response is not None and response.status_code == HTTP_NOT_FOUND:
            raise RemoteFileNotFound(f"{what}: not found") from e

        logger.error(f"API request failed ({what}): {e}")
        if response is not None:
            logger.error(f"Response: {response.text}")
        raise TransportError(f"{what}: {e}") from e

    def make_request(self, endpoint: str, method: str = 'GET',
                     params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Make a request to the Nitrado API.

        Args:
            endpoint: API endpoint path.
            method: HTTP method to use.
            params: Query parameters.

        Returns:
            API response as a dictionary.

        Raises:
            RemoteFileNotFound: If the API answers 404.
            TransportError: If the request fails for any other reason.
        """
        url = f"{NITRADO_API_BASE_URL}{self.service_id}{endpoint}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=self.headers,
                params=params,
                verify=self.ssl_verify
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            self._raise_transport_error(e, endpoint)
        except ValueError as e:
            raise TransportError(f"{endpoint}: invalid JSON response") from e

    def list_files(self, directory: str) -> List[Dict[str, Any]]:
        """
        List files in a directory on the server.

        Args:
            directory: Directory path.

        Returns:
            List of file information dictionaries.
        """
        response = self.make_request(f"{self.remote_base_path}/list", params={'dir': directory})
        return response.get('data', {}).get('entries', [])

    def stat(self, path: str) -> Dict[str, Any]:
        """
        Return the size of a remote file using its directory listing.

        Args:
            path: Remote file path.

        Returns:
            Dictionary with a ``size`` key.

        Raises:
            RemoteFileNotFound: If the file is not listed.
            TransportError: If the listing fails.
        """
        directory, name = posixpath.split(path)
        for entry in self.list_files(directory or '/'):
            if entry.get('path') == path or entry.get('name') == name:
                return {'size': int(entry.get('size', 0))}
        raise RemoteFileNotFound(f"{path} not found")

    def _get_download_url(self, remote_path: str) -> Dict[str, str]:
        """
        Get a download token for a file from Nitrado.

        Args:
            remote_path: Path to the file on the server.

        Returns:
            Dictionary with ``url`` and ``token`` keys.

        Raises:
            TransportError: If the response has an unexpected format.
        """
        token_response = self.make_request(f"{self.remote_base_path}/download",
                                           params={'file': remote_path})
        try:
            token_data = token_response['data']['token']
            return {'url': token_data['url'], 'token': token_data['token']}
        except (KeyError, TypeError) as e:
            raise TransportError(f"Invalid download token response for {remote_path}") from e

    def fetch_range(self, path: str, start: int, end: int) -> bytes:
        """
        Download the byte range ``[start, end)`` of a file.

        Uses Nitrado's two-step download (token, then file) with an HTTP Range
        header. If the file server ignores the Range header the full body is
        sliced locally.

        Raises:
            RemoteFileNotFound: If the file does not exist.
            TransportError: If the download fails.
        """
        if end <= start:
            return b''

        download = self._get_download_url(path)
        try:
            response = self.session.get(
                download['url'],
                params={'token': download['token']},
                headers={'Range': f"bytes={start}-{end - 1}"},
                verify=self.ssl_verify
            )
            response.raise_for_status()
        except requests.RequestException as e:
            self._raise_transport_error(e, path)

        if response.status_code == HTTP_PARTIAL_CONTENT:
            content = response.content
        else:
            logger.debug(f"Server ignored Range header for {path}, slicing full download")
            content = response.content[start:end]

        logger.debug(f"Fetched {len(content)} bytes of {path} [{start}, {end})")
        return content

    def run(self) -> Dict[str, Any]:
        """
        Check that every configured log file is reachable on the game server.

        Returns:
            Dictionary with the size of each file label, or None for missing files.
        """
        files = {}
        for label, path in (self.get_config('logs.files', {}) or {}).items():
            try:
                files[label] = self.stat(path)['size']
            except RemoteFileNotFound:
                files[label] = None
        return {'files': files}


def main():
    parser = argparse.ArgumentParser(
        description="Check the configured HumanitZ log files through the Nitrado API"
    )
    TrackerTool.add_standard_arguments(parser)
    args = parser.parse_args()

    config = TrackerTool.load_config(args.profile)
    if not config:
        logger.error(f"Failed to load configuration profile: {args.profile}")
        return 1

    if args.console:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        result = NitradoAPIClient(config).run()
    except TransportError as e:
        logger.error(f"Nitrado API check failed: {e}")
        return 1

    missing = 0
    for label, size in result['files'].items():
        if size is None:
            missing += 1
            logger.warning(f"{label}: not found")
        else:
            logger.info(f"{label}: {size} bytes")
    return 1 if missing else 0


if __name__ == "__main__":
    exit(main())
