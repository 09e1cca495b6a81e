#!/usr/bin/env python3
"""
Tests for profile-based configuration loading.
"""

import sys
import os
import json

# Add the src directory to the path so we can import the modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from config.config import Config, DEFAULT_SETTINGS


def make_dirs(tmp_path):
    profiles = tmp_path / 'profiles'
    secrets = tmp_path / 'secrets'
    profiles.mkdir()
    secrets.mkdir()
    return profiles, secrets


def test_default_profile_is_created(tmp_path):
    profiles, secrets = make_dirs(tmp_path)
    config = Config(config_dir=str(profiles), secrets_dir=str(secrets))

    assert (profiles / 'default.json').exists()
    assert config.get('polling.log_interval_seconds') == 30
    assert config.get('pvp.kill_window_seconds') == 60
    assert config.get() == DEFAULT_SETTINGS


def test_profile_and_secrets_are_deep_merged(tmp_path):
    profiles, secrets = make_dirs(tmp_path)
    (profiles / 'berlin.json').write_text(json.dumps({
        'general': {'timezone': 'Europe/Berlin'},
        'transport': {'type': 'nitrado'},
    }))
    (secrets / 'berlin_secrets.json').write_text(json.dumps({
        'nitrado_server': {'api_token': 'secret', 'service_id': '12345'},
    }))

    config = Config(config_dir=str(profiles), secrets_dir=str(secrets), profile='berlin')
    assert config.get('general.timezone') == 'Europe/Berlin'
    assert config.get('general.state_dir') == 'state'
    assert config.get('transport.type') == 'nitrado'
    assert config.get('nitrado_server.api_token') == 'secret'
    assert config.get('nitrado_server.ssl_verify') is True
    assert config.get('missing.key', 'fallback') == 'fallback'


def test_defaults_are_not_mutated_by_profiles(tmp_path):
    profiles, secrets = make_dirs(tmp_path)
    (profiles / 'custom.json').write_text(json.dumps({'pvp': {'enabled': False}}))
    Config(config_dir=str(profiles), secrets_dir=str(secrets), profile='custom')
    assert DEFAULT_SETTINGS['pvp']['enabled'] is True


def test_invalid_profile_falls_back_to_defaults(tmp_path):
    profiles, secrets = make_dirs(tmp_path)
    (profiles / 'broken.json').write_text('{oops')
    config = Config(config_dir=str(profiles), secrets_dir=str(secrets), profile='broken')
    assert config.get('polling.tick_interval_seconds') == 60


def test_list_and_switch_profiles(tmp_path):
    profiles, secrets = make_dirs(tmp_path)
    (profiles / 'other.json').write_text(json.dumps({'polling': {'log_interval_seconds': 10}}))
    config = Config(config_dir=str(profiles), secrets_dir=str(secrets))

    assert config.list_profiles() == ['default', 'other']
    assert config.switch_profile('other') is True
    assert config.get('polling.log_interval_seconds') == 10
    assert config.switch_profile('nope') is False
    assert config.profile == 'other'


def test_secrets_apply_when_default_profile_is_first_created(tmp_path):
    profiles, secrets = make_dirs(tmp_path)
    (secrets / 'default_secrets.json').write_text(json.dumps({
        'nitrado_server': {'api_token': 'first-run-token'},
    }))

    config = Config(config_dir=str(profiles), secrets_dir=str(secrets))
    assert (profiles / 'default.json').exists()
    assert config.get('nitrado_server.api_token') == 'first-run-token'

    with open(profiles / 'default.json', encoding='utf-8') as f:
        assert 'first-run-token' not in f.read()
