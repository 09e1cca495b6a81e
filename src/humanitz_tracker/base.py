"""
Base classes for the HumanitZ log tracker.

This module provides the tool base classes and the JSON state file helper
used by every persisted store in the package.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Callable
import json
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class TrackerTool(ABC):
    """Base class for all tracker tools."""

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the tool.

        Args:
            config: Optional configuration dictionary.
        """
        self.config = config or {}

    @staticmethod
    def add_standard_arguments(parser):
        """
        Add standard arguments that should be consistent across all command-line tools.

        Args:
            parser: The ArgumentParser instance to add arguments to
        """
        parser.add_argument("--profile", default=None,
                            help="Configuration profile to use (default: use default profile)")
        parser.add_argument("--console", action="store_true",
                            help="Log detailed output (sets log level to DEBUG)")

    @staticmethod
    def load_config(profile: Optional[str] = None) -> Dict[str, Any]:
        """
        Load configuration from a specified profile and set up logging.

        Args:
            profile: Name of the profile to load. If None, uses the default profile.

        Returns:
            The configuration dictionary.
        """
        from config.config import Config

        config_obj = Config(profile=profile)
        config_data = config_obj.get()

        log_level = config_data.get('general', {}).get('log_level', 'INFO').upper()

        # Reset any existing handlers to avoid duplicated logs
        for handler in logging.root.handlers[:]:
            logging.root.removeHandler(handler)

        logging.basicConfig(
            level=getattr(logging, log_level, logging.INFO),
            format='%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        logging.getLogger().setLevel(getattr(logging, log_level, logging.INFO))
        logging.debug(f"Logging initialized with level: {log_level}")

        return config_data

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key: The configuration key (e.g. "polling.log_interval_seconds").
            default: Default value if the key is not found.

        Returns:
            The configuration value, or the default if not found.
        """
        value = self.config
        for part in key.split('.'):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return value

    @abstractmethod
    def run(self) -> Any:
        """
        Run the tool. Must be implemented by subclasses.

        Returns:
            The result of running the tool.
        """
        pass


class FileBasedTool(TrackerTool):
    """Base class for tools that keep their state in files."""

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(config)
        self.state_dir = None

    def initialize_directories(self) -> str:
        """
        Resolve and create the state directory from configuration.

        Returns:
            The absolute path of the state directory.
        """
        self.state_dir = self.ensure_dir(self.get_config('general.state_dir', 'state'))
        logger.info(f"State directory: {self.state_dir}")
        return self.state_dir

    def resolve_path(self, path: str) -> str:
        """
        Resolve a path, expanding user paths and environment variables.

        Args:
            path: The path to resolve.

        Returns:
            The resolved absolute path.
        """
        expanded_path = os.path.expanduser(os.path.expandvars(path))
        return os.path.abspath(expanded_path)

    def ensure_dir(self, directory: str) -> str:
        """
        Ensure a directory exists, create it if it doesn't.

        Args:
            directory: The directory path.

        Returns:
            The absolute path to the directory.
        """
        path = Path(self.resolve_path(directory))
        os.makedirs(path, exist_ok=True)
        return str(path)

    def state_path(self, file_name: str) -> str:
        """Return the absolute path of a file inside the state directory."""
        if not self.state_dir:
            self.initialize_directories()
        return os.path.join(self.state_dir, file_name)


class JSONStateFile:
    """
    A JSON document on disk written with atomic replace.

    Stores own one of these each. Loading never raises for missing or
    structurally invalid files: the caller gets its default back and a
    warning is logged, so one corrupt store cannot take the process down.
    """

    def __init__(self, file_path: str) -> None:
        self.file_path = os.path.abspath(os.path.expanduser(file_path))

    def exists(self) -> bool:
        return os.path.isfile(self.file_path)

    def load(self, default: Any, validate: Optional[Callable[[Any], bool]] = None) -> Any:
        """
        Read the JSON document.

        Args:
            default: Value returned when the file is missing or invalid.
            validate: Optional predicate the parsed document must satisfy.

        Returns:
            The parsed document, or ``default``.
        """
        if not self.exists():
            logger.debug(f"No state file at {self.file_path}, starting fresh")
            return default

        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read state file {self.file_path}: {e}. Starting fresh.")
            return default

        if validate is not None and not validate(data):
            logger.warning(f"State file {self.file_path} has an unexpected structure. Starting fresh.")
            return default

        return data

    def write(self, data: Any, indent: int = 2) -> str:
        """
        Write the document atomically (temp file in the same directory, then rename).

        Args:
            data: JSON-serialisable data.
            indent: Indentation for the human-readable output.

        Returns:
            The absolute path written.
        """
        directory = os.path.dirname(self.file_path)
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix='.tmp-', suffix='.json', dir=directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=indent)
            os.replace(tmp_path, self.file_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.debug(f"State written to {self.file_path}")
        return self.file_path
