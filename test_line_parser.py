#!/usr/bin/env python3
"""
Tests for the HumanitZ log line parser.
"""

import sys
import os
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

# Add the src directory to the path so we can import the modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from humanitz_tracker.log.events import (
    Death, Build, DamageTaken, Loot, RaidHit, AdminAccess, CheatFlag, Connect, Disconnect,
)
from humanitz_tracker.log.line_parser import (
    LineParser, parse_id_map, is_player_source, simplify_blueprint, simplify_container,
)

ALICE_ID = '76561198000000001'
BOB_ID = '76561198000000002'


@pytest.fixture
def parser():
    return LineParser(timezone.utc)


def test_grammar_order_is_fixed(parser):
    assert parser.grammar_order == [
        'connect', 'death', 'build', 'damage', 'loot', 'owned_raid', 'unowned_raid', 'admin', 'cheat',
    ]


def test_requires_source_timezone():
    with pytest.raises(ValueError):
        LineParser(None)


def test_death(parser):
    event = parser.parse_line('(17/10/2026 14:05) Player died (Bob)')
    assert isinstance(event, Death)
    assert event.player == 'Bob'
    assert event.ts == datetime(2026, 10, 17, 14, 5, tzinfo=timezone.utc)


def test_connect_and_disconnect(parser):
    connect = parser.parse_line(f'Player Connected Alice NetID({ALICE_ID}_+_|abc) (17/10/2026 9:30)')
    assert isinstance(connect, Connect)
    assert connect.player == 'Alice'
    assert connect.player_id == ALICE_ID
    assert connect.ts == datetime(2026, 10, 17, 9, 30, tzinfo=timezone.utc)

    disconnect = parser.parse_line(f'Player Disconnected Alice NetID({ALICE_ID}_+_|abc) (17/10/2026 10:00)')
    assert isinstance(disconnect, Disconnect)
    assert disconnect.player_id == ALICE_ID


def test_build(parser):
    event = parser.parse_line(f'(17/10/2026 14:05) Alice({ALICE_ID}_+_|abc) finished building BP_Wood_Wall_C_2147')
    assert isinstance(event, Build)
    assert event.player == 'Alice'
    assert event.player_id == ALICE_ID
    assert event.item == 'Wood Wall'


def test_damage(parser):
    event = parser.parse_line('(17/10/2026 14:05) Bob took 25.5 damage from Alice')
    assert isinstance(event, DamageTaken)
    assert event.victim == 'Bob'
    assert event.source == 'Alice'
    assert event.amount == 25.5


def test_zero_damage_is_discarded(parser):
    assert parser.parse_line('(17/10/2026 14:05) Bob took 0 damage from Alice') is None


def test_loot(parser):
    event = parser.parse_line(
        f'(17/10/2026 14:05) Alice ({ALICE_ID}_+_|abc) looted a container '
        f'(BP_StorageContainer_C_123) owner by {BOB_ID}'
    )
    assert isinstance(event, Loot)
    assert event.looter_id == ALICE_ID
    assert event.owner_id == BOB_ID
    assert event.container_kind == 'Storage Container'


def test_owned_raid(parser):
    event = parser.parse_line(
        f'(17/10/2026 14:05) Building (BP_Wood_Wall_C_21474) owned by ({BOB_ID}_+_|xyz) '
        f'damaged (50) by Alice({ALICE_ID}_+_|abc)'
    )
    assert isinstance(event, RaidHit)
    assert event.attacker == 'Alice'
    assert event.attacker_id == ALICE_ID
    assert event.owner_id == BOB_ID
    assert event.structure_kind == 'Wood Wall'
    assert event.destroyed is False


def test_owned_raid_destroyed(parser):
    event = parser.parse_line(
        f'(17/10/2026 14:05) Building (BP_Wood_Wall_C_21474) owned by ({BOB_ID}_+_|xyz) '
        f'damaged (50) by Alice({ALICE_ID}_+_|abc) (Destroyed)'
    )
    assert isinstance(event, RaidHit)
    assert event.destroyed is True


def test_self_raid_is_discarded(parser):
    line = (f'(17/10/2026 14:05) Building (BP_Wood_Wall_C_21474) owned by ({ALICE_ID}_+_|abc) '
            f'damaged (50) by Alice({ALICE_ID}_+_|abc)')
    assert parser.parse_line(line) is None


def test_sentinel_raid_is_discarded(parser):
    line = (f'(17/10/2026 14:05) Building (BP_Wood_Wall_C_21474) owned by ({BOB_ID}_+_|xyz) '
            f'damaged (5) by Decayfalse')
    assert parser.parse_line(line) is None


def test_unowned_raid_only_when_destroyed(parser):
    destroyed = parser.parse_line(
        f'(17/10/2026 14:05) Building (BP_Wood_Wall_C_1) owned by () damaged (50) '
        f'by Alice({ALICE_ID}_+_|abc) (Destroyed)'
    )
    assert isinstance(destroyed, RaidHit)
    assert destroyed.owner_id is None
    assert destroyed.destroyed is True

    damaged = parser.parse_line(
        f'(17/10/2026 14:05) Building (BP_Wood_Wall_C_1) owned by () damaged (50) by Alice({ALICE_ID}_+_|abc)'
    )
    assert damaged is None


def test_admin_and_cheat(parser):
    admin = parser.parse_line('(17/10/2026 14:05) Alice gained admin access!')
    assert isinstance(admin, AdminAccess)
    assert admin.player == 'Alice'

    cheat = parser.parse_line(f'(17/10/2026 14:05) Stack limit detected in drop function (Alice - {ALICE_ID})')
    assert isinstance(cheat, CheatFlag)
    assert cheat.player == 'Alice'
    assert cheat.player_id == ALICE_ID
    assert cheat.flag == 'Stack limit detected in drop function'


def test_bom_and_whitespace_are_tolerated(parser):
    event = parser.parse_line('\ufeff(17/10/2026 14:05) Player died (Bob)  \r')
    assert isinstance(event, Death)
    assert event.player == 'Bob'


def test_year_with_comma_and_dash_separators(parser):
    event = parser.parse_line('(17-10-2,026 14:05:33) Player died (Bob)')
    assert event.ts == datetime(2026, 10, 17, 14, 5, tzinfo=timezone.utc)


def test_invalid_date_and_unknown_lines(parser):
    assert parser.parse_line('(31/02/2026 14:05) Player died (Bob)') is None
    assert parser.parse_line('(17/10/2026 14:05) Server started') is None
    assert parser.parse_line('garbage') is None
    assert parser.parse_line('') is None


def test_source_timezone_conversion():
    parser = LineParser(ZoneInfo('Europe/Berlin'))
    event = parser.parse_line('(17/10/2026 14:05) Player died (Bob)')
    # Berlin is on summer time (UTC+2) in mid October
    assert event.ts == datetime(2026, 10, 17, 12, 5, tzinfo=timezone.utc)


def test_parse_lines_keeps_order(parser):
    events = parser.parse_lines([
        '(17/10/2026 14:05) Bob took 10 damage from Alice',
        'noise',
        '(17/10/2026 14:06) Player died (Bob)',
    ])
    assert [e.kind for e in events] == ['damage', 'death']


def test_parse_id_map():
    text = (f'\ufeff{ALICE_ID}_+_|0002abc@Alice\n'
            f'{BOB_ID}_+_|0002def@Bob the Builder\r\n'
            'not a mapping\n')
    assert parse_id_map(text) == {'Alice': ALICE_ID, 'Bob the Builder': BOB_ID}


def test_is_player_source():
    assert is_player_source('Alice')
    assert not is_player_source('Zeek')
    assert not is_player_source('Decayfalse')
    assert not is_player_source('BP_Zombie_Runner_C_1')
    assert not is_player_source('Wolf')
    assert not is_player_source('')


def test_name_simplification():
    assert simplify_blueprint('BP_GlassWindow_C_2147481025') == 'GlassWindow'
    assert simplify_blueprint('BP_Wood_Wall_C') == 'Wood Wall'
    assert simplify_container('ChildActor_GEN_VARIABLE_BP_VehicleStorage_C_CAT_1') == 'Vehicle Storage'
