"""
Output sink interface.

The tracker hands finished, human-readable events to a sink. Delivery is best
effort: a failing sink is logged and never retried or allowed to break a
poll cycle.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

logger = logging.getLogger(__name__)

# Group keys used by the tracker
GROUP_ACTIVITY = 'activity'
GROUP_PVP_KILLS = 'pvp_kills'
GROUP_DAILY_SUMMARY = 'daily_summary'
GROUP_KILL_FEED = 'kill_feed'
GROUP_SURVIVAL_FEED = 'survival_feed'
GROUP_PROGRESS_FEED = 'progress_feed'
GROUP_CHALLENGES = 'challenges'


@dataclass
class RenderedEvent:
    title: str
    lines: List[str] = field(default_factory=list)
    timestamp: Optional[datetime] = None
    footer: str = ''

    @property
    def text(self) -> str:
        parts = [self.title] + list(self.lines)
        if self.footer:
            parts.append(self.footer)
        return '\n'.join(parts)


class Sink(ABC):
    """Consumer of rendered events."""

    @abstractmethod
    def post(self, group_key: str, rendered: RenderedEvent) -> None:
        """Deliver one rendered event to the channel identified by ``group_key``."""


class LoggingSink(Sink):
    """Sink that writes rendered events to the log."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def post(self, group_key: str, rendered: RenderedEvent) -> None:
        body = ' | '.join(rendered.lines)
        message = f"[{group_key}] {rendered.title}"
        if body:
            message += f" - {body}"
        if rendered.footer:
            message += f" ({rendered.footer})"
        logger.log(self.level, message)


def post_safely(sink: Sink, group_key: str, rendered: RenderedEvent) -> bool:
    """
    Post to a sink, logging instead of raising on failure.

    Returns:
        True if the sink accepted the event.
    """
    try:
        sink.post(group_key, rendered)
        return True
    except Exception as e:
        logger.error(f"Sink failed to post '{rendered.title}' to {group_key}: {e}")
        return False
