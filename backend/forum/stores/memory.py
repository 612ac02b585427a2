"""In-memory ForumStore.

Holds dataclass records whose attribute names match the Django models, so
services, tree building and tests treat both stores alike. A single
re-entrant lock makes every mutation an atomic read-check-write; toggles
from concurrent threads serialize to a consistent final state.
atomic() holds that lock for a whole block and restores a snapshot of
the tables when the block raises.
"""

import copy
import itertools
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from django.utils import timezone

from ..exceptions import NotFoundError, ValidationError


@dataclass
class ThreadRecord:
    id: int
    author_id: Any
    title: str
    content: str
    category: str
    tags: list
    created_at: datetime
    updated_at: datetime
    is_visible: bool = True
    upvote_count: int = 0
    flag_count: int = 0


@dataclass
class CommentRecord:
    id: int
    thread_id: int
    author_id: Any
    parent_id: Optional[int]
    content: str
    depth: int
    created_at: datetime
    updated_at: datetime
    is_visible: bool = True
    upvote_count: int = 0
    flag_count: int = 0


@dataclass
class UpvoteRecord:
    id: int
    user_id: Any
    thread_id: Optional[int]
    comment_id: Optional[int]
    created_at: datetime


@dataclass
class FlagRecord:
    id: int
    user_id: Any
    thread_id: Optional[int]
    comment_id: Optional[int]
    reason: str
    created_at: datetime
    status: str = 'pending'
    resolution: str = ''
    moderator_id: Any = None
    resolved_at: Optional[datetime] = None


@dataclass
class SubscriptionRecord:
    id: int
    thread_id: int
    user_id: Any
    created_at: datetime


@dataclass
class NotificationRecord:
    id: int
    thread_id: int
    comment_id: Optional[int]
    user_id: Any
    actor_id: Any
    type: str
    created_at: datetime
    is_read: bool = False


@dataclass
class TipRecord:
    id: int
    from_user_id: Any
    to_user_id: Any
    thread_id: int
    comment_id: Optional[int]
    amount: Decimal
    message: str
    created_at: datetime


@dataclass
class ProfileRecord:
    user_id: Any
    reputation: int = 0
    is_blocked: bool = False
    blocked_at: Optional[datetime] = None


@dataclass
class _Tables:
    threads: dict = field(default_factory=dict)
    comments: dict = field(default_factory=dict)
    upvotes: dict = field(default_factory=dict)
    flags: dict = field(default_factory=dict)
    subscriptions: dict = field(default_factory=dict)
    notifications: dict = field(default_factory=dict)
    tips: dict = field(default_factory=dict)
    profiles: dict = field(default_factory=dict)


class InMemoryForumStore:
    """
    ForumStore over plain dicts.

    Pass known_user_ids to enable user lookups, moderator_ids to name the
    users allowed to moderate.
    """

    def __init__(self, known_user_ids=None, moderator_ids=()):
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._tables = _Tables()
        self._known_user_ids = set(known_user_ids) if known_user_ids is not None else None
        self._moderator_ids = set(moderator_ids)

    def _next_id(self):
        return next(self._ids)

    def _target_table(self, target):
        return self._tables.threads if target.kind == 'thread' else self._tables.comments

    # Threads and comments

    def create_thread(self, author_id, title, content, category, tags):
        with self._lock:
            now = timezone.now()
            record = ThreadRecord(
                id=self._next_id(),
                author_id=author_id,
                title=title,
                content=content,
                category=category,
                tags=list(tags),
                created_at=now,
                updated_at=now,
            )
            self._tables.threads[record.id] = record
            return record

    def get_thread(self, thread_id):
        return self._tables.threads.get(thread_id)

    def list_threads(self, category=None):
        with self._lock:
            threads = [
                thread for thread in self._tables.threads.values()
                if thread.is_visible and (category is None or thread.category == category)
            ]
        return sorted(threads, key=lambda t: (t.created_at, t.id), reverse=True)

    def create_comment(self, thread_id, author_id, content, parent_id, depth):
        with self._lock:
            if thread_id not in self._tables.threads:
                raise NotFoundError(f"Thread {thread_id} does not exist")
            now = timezone.now()
            record = CommentRecord(
                id=self._next_id(),
                thread_id=thread_id,
                author_id=author_id,
                parent_id=parent_id,
                content=content,
                depth=depth,
                created_at=now,
                updated_at=now,
            )
            self._tables.comments[record.id] = record
            return record

    def get_comment(self, comment_id):
        return self._tables.comments.get(comment_id)

    def list_comments(self, thread_id):
        with self._lock:
            comments = [c for c in self._tables.comments.values() if c.thread_id == thread_id]
        return sorted(comments, key=lambda c: (c.created_at, c.id))

    def set_visibility(self, target, visible):
        with self._lock:
            record = self._target_table(target).get(target.id)
            if record is not None:
                record.is_visible = visible

    # Upvotes

    def _find_upvote(self, user_id, target):
        for upvote in self._tables.upvotes.values():
            if upvote.user_id == user_id and getattr(upvote, target.field) == target.id:
                return upvote
        return None

    def toggle_upvote(self, user_id, target):
        with self._lock:
            record = self._target_table(target).get(target.id)
            if record is None:
                raise NotFoundError(f"{target.kind.capitalize()} {target.id} does not exist")

            existing = self._find_upvote(user_id, target)
            if existing is not None:
                del self._tables.upvotes[existing.id]
                record.upvote_count = max(record.upvote_count - 1, 0)
                return False

            upvote = UpvoteRecord(
                id=self._next_id(),
                user_id=user_id,
                thread_id=target.id if target.kind == 'thread' else None,
                comment_id=target.id if target.kind == 'comment' else None,
                created_at=timezone.now(),
            )
            self._tables.upvotes[upvote.id] = upvote
            record.upvote_count += 1
            return True

    def has_upvote(self, user_id, target):
        with self._lock:
            return self._find_upvote(user_id, target) is not None

    # Flags

    def create_flag(self, user_id, target, reason):
        with self._lock:
            record = self._target_table(target).get(target.id)
            if record is None:
                raise NotFoundError(f"{target.kind.capitalize()} {target.id} does not exist")
            flag = FlagRecord(
                id=self._next_id(),
                user_id=user_id,
                thread_id=target.id if target.kind == 'thread' else None,
                comment_id=target.id if target.kind == 'comment' else None,
                reason=reason,
                created_at=timezone.now(),
            )
            self._tables.flags[flag.id] = flag
            record.flag_count += 1
            return flag

    def get_flag(self, flag_id):
        return self._tables.flags.get(flag_id)

    def list_flags(self, status=None):
        with self._lock:
            flags = [
                flag for flag in self._tables.flags.values()
                if status is None or flag.status == status
            ]
        return sorted(flags, key=lambda f: (f.created_at, f.id))

    def resolve_flag(self, flag_id, moderator_id, resolution):
        with self._lock:
            flag = self._tables.flags.get(flag_id)
            if flag is None:
                raise NotFoundError(f"Flag {flag_id} does not exist")
            if flag.status != 'pending':
                raise ValidationError(f"Flag {flag_id} is already {flag.status}")
            flag.status = 'resolved'
            flag.resolution = resolution
            flag.moderator_id = moderator_id
            flag.resolved_at = timezone.now()
            return flag

    # Subscriptions

    def _find_subscription(self, thread_id, user_id):
        for subscription in self._tables.subscriptions.values():
            if subscription.thread_id == thread_id and subscription.user_id == user_id:
                return subscription
        return None

    def toggle_subscription(self, thread_id, user_id):
        with self._lock:
            if thread_id not in self._tables.threads:
                raise NotFoundError(f"Thread {thread_id} does not exist")
            existing = self._find_subscription(thread_id, user_id)
            if existing is not None:
                del self._tables.subscriptions[existing.id]
                return False
            subscription = SubscriptionRecord(
                id=self._next_id(),
                thread_id=thread_id,
                user_id=user_id,
                created_at=timezone.now(),
            )
            self._tables.subscriptions[subscription.id] = subscription
            return True

    def is_subscribed(self, thread_id, user_id):
        with self._lock:
            return self._find_subscription(thread_id, user_id) is not None

    def list_subscribers(self, thread_id):
        with self._lock:
            return [
                s.user_id for s in sorted(self._tables.subscriptions.values(), key=lambda s: s.id)
                if s.thread_id == thread_id
            ]

    # Notifications

    def create_notifications(self, thread_id, comment_id, actor_id, user_ids, type):
        with self._lock:
            created = []
            for user_id in user_ids:
                notification = NotificationRecord(
                    id=self._next_id(),
                    thread_id=thread_id,
                    comment_id=comment_id,
                    user_id=user_id,
                    actor_id=actor_id,
                    type=type,
                    created_at=timezone.now(),
                )
                self._tables.notifications[notification.id] = notification
                created.append(notification)
            return created

    def list_notifications(self, user_id, unread_only=False):
        with self._lock:
            notifications = [
                n for n in self._tables.notifications.values()
                if n.user_id == user_id and not (unread_only and n.is_read)
            ]
        return sorted(notifications, key=lambda n: (n.created_at, n.id), reverse=True)

    def mark_notifications_read(self, user_id):
        with self._lock:
            updated = 0
            for notification in self._tables.notifications.values():
                if notification.user_id == user_id and not notification.is_read:
                    notification.is_read = True
                    updated += 1
            return updated

    # Tips

    def create_tip(self, from_user_id, to_user_id, thread_id, comment_id, amount, message):
        with self._lock:
            tip = TipRecord(
                id=self._next_id(),
                from_user_id=from_user_id,
                to_user_id=to_user_id,
                thread_id=thread_id,
                comment_id=comment_id,
                amount=Decimal(amount),
                message=message,
                created_at=timezone.now(),
            )
            self._tables.tips[tip.id] = tip
            return tip

    def list_tips(self, thread_id):
        with self._lock:
            tips = [t for t in self._tables.tips.values() if t.thread_id == thread_id]
        return sorted(tips, key=lambda t: (t.created_at, t.id))

    # Users

    def _check_user(self, user_id):
        if self._known_user_ids is not None and user_id not in self._known_user_ids:
            raise NotFoundError(f"User {user_id} does not exist")

    def _profile(self, user_id):
        profile = self._tables.profiles.get(user_id)
        if profile is None:
            profile = self._tables.profiles[user_id] = ProfileRecord(user_id=user_id)
        return profile

    def is_user_blocked(self, user_id):
        profile = self._tables.profiles.get(user_id)
        return profile is not None and profile.is_blocked

    def set_user_blocked(self, user_id, blocked):
        with self._lock:
            self._check_user(user_id)
            profile = self._profile(user_id)
            profile.is_blocked = blocked
            profile.blocked_at = timezone.now() if blocked else None

    def is_moderator(self, user_id):
        return user_id in self._moderator_ids

    def get_user_profile(self, user_id):
        with self._lock:
            if self._known_user_ids is not None and user_id not in self._known_user_ids:
                return None
            return self._tables.profiles.get(user_id) or ProfileRecord(user_id=user_id)

    def add_reputation(self, user_id, delta):
        with self._lock:
            self._profile(user_id).reputation += delta

    # Transactions

    @contextmanager
    def atomic(self):
        """Hold the lock for the block; restore a snapshot if it raises."""
        with self._lock:
            snapshot = copy.deepcopy(self._tables)
            try:
                yield
            except BaseException:
                self._tables = snapshot
                raise
