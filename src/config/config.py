"""
Configuration Reader for the HumanitZ Log Tracker

A lightweight configuration system that provides:
- Profile-based configuration management
- JSON-based configuration storage
- Secrets management for sensitive information (API tokens)
- Hierarchical configuration with dot-notation access

Usage:
    from config import Config
    settings = Config(profile='my_server')
    interval = settings.get('polling.log_interval_seconds', 30)

The configuration system loads settings in this order (later overrides earlier):
1. Built-in defaults (DEFAULT_SETTINGS)
2. Default or specified profile (profiles/<profile>.json)
3. Profile-specific secrets (secrets/<profile>_secrets.json)
"""

import copy
from typing import Dict, Any, List, Optional
from pathlib import Path

from humanitz_tracker.base import FileBasedTool, JSONStateFile, logger


DEFAULT_SETTINGS: Dict[str, Any] = {
    "general": {
        "log_level": "INFO",
        "state_dir": "state",
        "timezone": "UTC",
    },
    "logs": {
        "source_timezone": "UTC",
        "files": {
            "HMZLog": "/HumanitZServer/HMZLog.log",
            "ConnectLog": "/HumanitZServer/PlayerConnectedLog.txt",
        },
        "id_map_path": "/HumanitZServer/PlayerIDMapped.txt",
    },
    "transport": {
        "type": "local",
        "local_root": ".",
    },
    "nitrado_server": {
        "remote_base_path": "/gameserver",
        "ssl_verify": True,
    },
    "snapshots": {
        "path": "/HumanitZServer/player_snapshots.json",
    },
    "polling": {
        "log_interval_seconds": 30,
        "snapshot_interval_seconds": 300,
        "tick_interval_seconds": 60,
    },
    "pvp": {
        "enabled": True,
        "kill_window_seconds": 60,
        "history_size": 50,
    },
    "coalescer": {
        "delay_seconds": 60,
        "loop_threshold": 3,
        "loop_window_seconds": 300,
    },
    "reconciler": {
        "challenge_targets": {},
    },
    "calendar": {
        "weekly_reset_day": 0,
        "weekly_reset_time": "00:00",
    },
    "feeds": {
        "kill_feed": True,
        "pvp_kill_feed": True,
        "activity_feed": True,
    },
}


class Config(FileBasedTool):
    """
    A JSON-based configuration reader for the tracker.

    Attributes:
        config_dir (str): Directory containing profile JSON files
        secrets_dir (str): Directory containing secrets JSON files
        profile (str): Currently active profile name
        data (dict): Loaded configuration data
    """

    DEFAULT_CONFIG_DIR = str(Path(__file__).parent / 'profiles')
    DEFAULT_SECRETS_DIR = str(Path(__file__).parent / 'secrets')
    DEFAULT_PROFILE = "default"

    def __init__(self, config_dir: str = None, secrets_dir: str = None, profile: str = None,
                 config: Optional[Dict[str, Any]] = None):
        """
        Initialize the Config instance.

        Args:
            config_dir (str, optional): Directory for config profiles.
                Defaults to 'profiles' subdirectory relative to this file.
            secrets_dir (str, optional): Directory for secrets files.
                Defaults to 'secrets' subdirectory relative to this file.
            profile (str, optional): Profile name to use. Defaults to 'default'.
            config (dict, optional): Base configuration dictionary for TrackerTool compatibility.
        """
        super().__init__(config)

        self.config_dir = config_dir or self.DEFAULT_CONFIG_DIR
        self.secrets_dir = secrets_dir or self.DEFAULT_SECRETS_DIR
        self.profile = profile or self.DEFAULT_PROFILE
        self.data = {}

        self._load()

    def run(self) -> Dict[str, Any]:
        """Return the full configuration dictionary."""
        return self.data

    def _load(self):
        """
        Load the built-in defaults, then the profile JSON file, then its secrets.

        A missing default profile is created on disk from DEFAULT_SETTINGS.
        A missing or unreadable profile falls back to the built-in defaults;
        its secrets file is still applied.
        """
        self.data = copy.deepcopy(DEFAULT_SETTINGS)
        profile_path = Path(self.config_dir) / f"{self.profile}.json"

        if not profile_path.exists():
            if self.profile == self.DEFAULT_PROFILE:
                self._create_default_profile(profile_path)
            else:
                logger.warning(f"Profile '{self.profile}' not found. Using built-in defaults.")
        else:
            profile_data = JSONStateFile(str(profile_path)).load(None, validate=lambda d: isinstance(d, dict))
            if profile_data is None:
                logger.error(f"Error loading configuration profile '{self.profile}'. Using built-in defaults.")
            else:
                self._deep_merge(self.data, profile_data)
                logger.info(f"Loaded configuration from '{self.profile}'")

        self._load_secrets()

    def _create_default_profile(self, profile_path: Path):
        """
        Create the default profile file from the built-in defaults.

        Args:
            profile_path: Path where the default profile will be created
        """
        try:
            JSONStateFile(str(profile_path)).write(DEFAULT_SETTINGS)
            logger.info(f"Created default profile at '{profile_path}'")
        except OSError as e:
            logger.error(f"Error creating default configuration: {e}")

    def _load_secrets(self):
        """
        Load and deep-merge '<profile>_secrets.json' from the secrets directory.

        Secrets override profile values with the same keys.
        """
        profile_secrets_path = Path(self.secrets_dir) / f"{self.profile}_secrets.json"
        if not profile_secrets_path.exists():
            logger.warning(f"No secrets file found for profile '{self.profile}'")
            return

        profile_secrets = JSONStateFile(str(profile_secrets_path)).load(
            None, validate=lambda d: isinstance(d, dict))
        if profile_secrets is not None:
            self._deep_merge(self.data, profile_secrets)
            logger.info(f"Loaded and merged secrets from '{profile_secrets_path}'")

    def _deep_merge(self, target: Dict[str, Any], source: Dict[str, Any]):
        """
        Deep merge two dictionaries. Non-dict values in source replace values in target.
        """
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._deep_merge(target[key], value)
            else:
                target[key] = value

    def get(self, path: str = None, default: Any = None) -> Any:
        """
        Get a configuration value by path using dot notation.

        Args:
            path (str, optional): Dot notation path to the value
                (e.g., "pvp.kill_window_seconds", "nitrado_server.api_token").
                If None, returns the entire configuration dictionary.
            default (Any, optional): Value to return if path not found.

        Returns:
            Any: The configuration value at the specified path, or default if not found.

        Examples:
            >>> Config().get('polling.log_interval_seconds')
            30
        """
        if path is None:
            return self.data

        current = self.data
        for key in path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def list_profiles(self) -> List[str]:
        """
        List all available profile names.

        Returns:
            List[str]: Profile names (without .json extension) found in the config directory.
        """
        return sorted(f.stem for f in Path(self.config_dir).glob("*.json"))

    def switch_profile(self, profile: str) -> bool:
        """
        Switch to a different profile and reload.

        Args:
            profile (str): Name of profile to switch to (without .json extension).

        Returns:
            bool: True if successful, False if profile not found.
        """
        profile_path = Path(self.config_dir) / f"{profile}.json"
        if profile_path.exists():
            self.profile = profile
            self._load()
            return True

        logger.warning(f"Profile '{profile}' not found.")
        return False
