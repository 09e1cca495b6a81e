"""
HumanitZ Log Tracker - Python package for HumanitZ game server statistics

This package tails the server's append-only logs, turns each line into a
typed event and keeps durable per-player statistics: PvP kills, daily and
weekly activity, and lifetime kill counts reconciled from save snapshots.

Configuration comes from the config module's JSON profiles.
"""

__version__ = '0.3.0'
