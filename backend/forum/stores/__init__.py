from .base import ForumStore, Target
from .memory import InMemoryForumStore
from .orm import OrmForumStore

__all__ = ['ForumStore', 'Target', 'InMemoryForumStore', 'OrmForumStore']
