"""
Stateful tracker components fed by parsed log events and player snapshots.
"""
