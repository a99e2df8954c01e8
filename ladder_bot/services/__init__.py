"""
Services package for the ladder bot.

Cross-cutting collaborators of the operations layer: per-category locks,
notification dispatch and realtime ranking events.
"""

from .category_locks import CategoryLockRegistry
from .notifications import NotificationDispatcher, NotificationKind
from .ranking_events import RankingEventPublisher

__all__ = ['CategoryLockRegistry', 'NotificationDispatcher', 'NotificationKind', 'RankingEventPublisher']
