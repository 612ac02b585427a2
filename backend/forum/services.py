"""
Forum Service
=============

Business rules for threads, comments and engagement, on top of any
ForumStore:

1. Every write needs an authenticated, non-blocked user
2. User text passes AutoMod before anything is persisted
3. Toggles delegate atomicity to the store
4. New comments fan out one notification per subscriber
5. Hidden threads and comments behave as missing for everyone but
   moderators
6. Multi-row writes (comment + notifications + reputation, tip +
   reputation) run inside one store.atomic() block

Failures are raised as forum.exceptions.ForumError subclasses. A moderation
reject is a ModerationRejected carrying the ModerationResult; the result
itself is an ordinary value returned by check_content().
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from django.conf import settings

from .automod import AutoModerator, ModerationResult
from .exceptions import (
    AuthenticationError,
    ModerationRejected,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .models import (
    REPUTATION_PER_REPLY,
    REPUTATION_PER_TIP,
    Flag,
    Notification,
    Thread,
    Tip,
)
from .queries import CommentNode, build_comment_tree, verify_comment_tree
from .stores import ForumStore, OrmForumStore, Target

logger = logging.getLogger(__name__)


@dataclass
class ThreadWithComments:
    thread: Any
    comments: list


@dataclass
class ThreadWithTree:
    thread: Any
    comments: list[CommentNode]
    comment_count: int


class ForumService:
    """Thread, comment, upvote, flag, subscription and tip operations."""

    def __init__(self, store: ForumStore, moderator: Optional[AutoModerator] = None):
        self.store = store
        self.moderator = moderator or AutoModerator.from_settings()

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _require_user(self, user_id, action):
        if user_id is None:
            raise AuthenticationError(f"User must be authenticated to {action}")
        if self.store.is_user_blocked(user_id):
            raise PermissionDeniedError("User is blocked from posting")
        return user_id

    def _require_moderator(self, moderator_id):
        if moderator_id is None:
            raise AuthenticationError("Moderator must be authenticated")
        if not self.store.is_moderator(moderator_id):
            raise PermissionDeniedError("Only moderators can do this")
        return moderator_id

    def _require_text(self, value, field_name, max_length=None):
        if value is None or not str(value).strip():
            raise ValidationError(f"{field_name} is required")
        return self._check_length(str(value).strip(), field_name, max_length)

    def _check_length(self, value, field_name, max_length):
        if max_length is not None and len(value) > max_length:
            raise ValidationError(f"{field_name} must be at most {max_length} characters")
        return value

    def _screen(self, text):
        result = self.moderator.moderate(text)
        if not result.is_clean:
            logger.info("AutoMod rejected submission: %s (%s)", result.status, result.reason)
            raise ModerationRejected(result)
        return result

    def _get_thread(self, thread_id):
        thread = self.store.get_thread(thread_id)
        if thread is None:
            raise NotFoundError(f"Thread {thread_id} does not exist")
        return thread

    def _get_comment(self, comment_id):
        comment = self.store.get_comment(comment_id)
        if comment is None:
            raise NotFoundError(f"Comment {comment_id} does not exist")
        return comment

    def _get_visible_thread(self, thread_id):
        thread = self._get_thread(thread_id)
        if not thread.is_visible:
            raise NotFoundError(f"Thread {thread_id} does not exist")
        return thread

    def _get_visible_comment(self, comment_id):
        """A comment is reachable only while it and its thread are visible."""
        comment = self._get_comment(comment_id)
        if not comment.is_visible:
            raise NotFoundError(f"Comment {comment_id} does not exist")
        thread = self.store.get_thread(comment.thread_id)
        if thread is None or not thread.is_visible:
            raise NotFoundError(f"Comment {comment_id} does not exist")
        return comment

    def _get_visible_target(self, target: Target):
        if target.kind == 'thread':
            return self._get_visible_thread(target.id)
        return self._get_visible_comment(target.id)

    # ------------------------------------------------------------------
    # AutoMod
    # ------------------------------------------------------------------

    def check_content(self, text: str) -> ModerationResult:
        """Preview what AutoMod would say. Persists nothing."""
        return self.moderator.moderate(text)

    # ------------------------------------------------------------------
    # Threads and comments
    # ------------------------------------------------------------------

    def create_thread(self, user_id, title, content, category, tags: Iterable[str] = ()):
        self._require_user(user_id, "create a thread")
        title = self._require_text(title, "title", _max_length(Thread, 'title'))
        category = self._require_text(category, "category", _max_length(Thread, 'category'))
        if content is None:
            raise ValidationError("content is required")

        self._screen(content)
        self._screen(title)

        clean_tags = []
        for tag in tags or ():
            tag = str(tag).strip()
            if tag and tag not in clean_tags:
                clean_tags.append(tag)

        thread = self.store.create_thread(
            author_id=user_id,
            title=title,
            content=content,
            category=category,
            tags=clean_tags,
        )
        logger.info("Thread %s created by user %s", thread.id, user_id)
        return thread

    def list_threads(self, category=None):
        return self.store.list_threads(category)

    def create_comment(self, user_id, thread_id, content, parent_id=None):
        """
        Add a comment or reply.

        depth = parent.depth + 1 (or 0 for root comments). The parent must
        already exist in the same thread, so parent chains never loop.

        The comment, the subscriber notifications and the thread author's
        reputation are written together or not at all.
        """
        self._require_user(user_id, "comment")
        if thread_id is None:
            raise ValidationError("thread_id is required")
        if content is None:
            raise ValidationError("content is required")

        thread = self._get_visible_thread(thread_id)

        depth = 0
        if parent_id is not None:
            parent = self._get_visible_comment(parent_id)
            if parent.thread_id != thread_id:
                raise ValidationError("Parent comment must belong to the same thread")
            depth = parent.depth + 1

        self._screen(content)

        with self.store.atomic():
            comment = self.store.create_comment(
                thread_id=thread_id,
                author_id=user_id,
                content=content,
                parent_id=parent_id,
                depth=depth,
            )
            self._notify_subscribers(thread_id, comment.id, user_id)
            if thread.author_id != user_id:
                self.store.add_reputation(thread.author_id, REPUTATION_PER_REPLY)
        return comment

    def _notify_subscribers(self, thread_id, comment_id, actor_id):
        recipients = [
            subscriber for subscriber in self.store.list_subscribers(thread_id)
            if subscriber != actor_id
        ]
        if not recipients:
            return []
        logger.debug(
            "Notifying %d subscriber(s) of thread %s about comment %s",
            len(recipients), thread_id, comment_id
        )
        return self.store.create_notifications(
            thread_id=thread_id,
            comment_id=comment_id,
            actor_id=actor_id,
            user_ids=recipients,
            type=Notification.Type.NEW_COMMENT,
        )

    def get_thread_with_comments(self, thread_id) -> ThreadWithComments:
        """Thread plus its flat comment list ordered by created_at."""
        thread = self._get_thread(thread_id)
        return ThreadWithComments(thread=thread, comments=self.store.list_comments(thread_id))

    def get_thread_with_comment_tree(self, thread_id, verify_depth=False) -> ThreadWithTree:
        loaded = self.get_thread_with_comments(thread_id)
        tree = build_comment_tree(loaded.comments)
        if verify_depth:
            verify_comment_tree(tree)
        return ThreadWithTree(
            thread=loaded.thread,
            comments=tree,
            comment_count=len(loaded.comments),
        )

    # ------------------------------------------------------------------
    # Upvotes
    # ------------------------------------------------------------------

    def toggle_upvote(self, user_id, thread_id=None, comment_id=None) -> bool:
        """
        Toggle the caller's upvote. Returns True when the upvote now exists.

        Two calls in a row leave the target's counter where it started.
        """
        target = Target.from_ids(thread_id=thread_id, comment_id=comment_id)
        self._require_user(user_id, "upvote")
        self._get_visible_target(target)

        upvoted = self.store.toggle_upvote(user_id, target)
        logger.debug("User %s %s %s %s", user_id,
                     'upvoted' if upvoted else 'removed upvote on', target.kind, target.id)
        return upvoted

    def has_upvoted(self, user_id, thread_id=None, comment_id=None) -> bool:
        if user_id is None:
            return False
        return self.store.has_upvote(user_id, Target.from_ids(thread_id, comment_id))

    # ------------------------------------------------------------------
    # Flags and moderation
    # ------------------------------------------------------------------

    def flag_content(self, user_id, reason, thread_id=None, comment_id=None):
        """Report a thread or comment. Always creates a new pending flag."""
        target = Target.from_ids(thread_id=thread_id, comment_id=comment_id)
        self._require_user(user_id, "flag content")
        reason = self._require_text(reason, "reason")
        self._get_visible_target(target)

        flag = self.store.create_flag(user_id, target, reason)
        logger.info("Flag %s raised on %s %s by user %s", flag.id, target.kind, target.id, user_id)
        return flag

    def list_flags(self, status=None):
        if status is not None and status not in Flag.Status.values:
            raise ValidationError(f"Unknown flag status: {status}")
        return self.store.list_flags(status)

    def resolve_flag(self, flag_id, moderator_id, hide_content=False):
        """
        pending -> resolved. With hide_content the flagged thread or comment
        is hidden everywhere except for moderators.
        """
        self._require_moderator(moderator_id)

        flag = self.store.get_flag(flag_id)
        if flag is None:
            raise NotFoundError(f"Flag {flag_id} does not exist")

        resolution = Flag.Resolution.HIDDEN if hide_content else Flag.Resolution.DISMISSED
        with self.store.atomic():
            flag = self.store.resolve_flag(flag_id, moderator_id, resolution)
            if hide_content:
                target = Target.from_ids(thread_id=flag.thread_id, comment_id=flag.comment_id)
                self.store.set_visibility(target, False)

        logger.info("Flag %s resolved by moderator %s (%s)", flag_id, moderator_id, resolution)
        return flag

    def block_user(self, moderator_id, user_id, blocked=True):
        self._require_moderator(moderator_id)
        if moderator_id == user_id:
            raise ValidationError("Moderators cannot block themselves")
        self.store.set_user_blocked(user_id, blocked)
        logger.warning("User %s %s by moderator %s",
                       user_id, 'blocked' if blocked else 'unblocked', moderator_id)

    # ------------------------------------------------------------------
    # Subscriptions and notifications
    # ------------------------------------------------------------------

    def toggle_subscription(self, user_id, thread_id) -> bool:
        if user_id is None:
            raise AuthenticationError("User must be authenticated to subscribe")
        self._get_visible_thread(thread_id)
        return self.store.toggle_subscription(thread_id, user_id)

    def is_subscribed(self, user_id, thread_id) -> bool:
        if user_id is None:
            return False
        return self.store.is_subscribed(thread_id, user_id)

    def subscribers(self, thread_id) -> list:
        self._get_thread(thread_id)
        return self.store.list_subscribers(thread_id)

    def list_notifications(self, user_id, unread_only=False):
        if user_id is None:
            raise AuthenticationError("User must be authenticated to read notifications")
        return self.store.list_notifications(user_id, unread_only)

    def mark_notifications_read(self, user_id) -> int:
        if user_id is None:
            raise AuthenticationError("User must be authenticated to read notifications")
        return self.store.mark_notifications_read(user_id)

    # ------------------------------------------------------------------
    # Tips
    # ------------------------------------------------------------------

    def send_tip(self, user_id, thread_id, amount, comment_id=None, message=''):
        """Tip the author of a thread, or of one of its comments."""
        self._require_user(user_id, "send a tip")

        try:
            amount = Decimal(str(amount)).quantize(Decimal('0.01'))
        except (InvalidOperation, ValueError):
            raise ValidationError("amount must be a number")
        if not amount.is_finite():
            raise ValidationError("amount must be a number")
        max_amount = Decimal(getattr(settings, 'FORUM', {}).get('TIP_MAX_AMOUNT', 1000))
        if amount <= 0 or amount > max_amount:
            raise ValidationError(f"amount must be between 0.01 and {max_amount}")

        thread = self._get_visible_thread(thread_id)
        recipient_id = thread.author_id
        if comment_id is not None:
            comment = self._get_visible_comment(comment_id)
            if comment.thread_id != thread_id:
                raise ValidationError("Comment must belong to the same thread")
            recipient_id = comment.author_id

        if recipient_id == user_id:
            raise ValidationError("You cannot tip yourself")

        message = self._check_length((message or '').strip(), "message", _max_length(Tip, 'message'))
        if message:
            self._screen(message)

        with self.store.atomic():
            tip = self.store.create_tip(
                from_user_id=user_id,
                to_user_id=recipient_id,
                thread_id=thread_id,
                comment_id=comment_id,
                amount=amount,
                message=message,
            )
            self.store.add_reputation(recipient_id, REPUTATION_PER_TIP)
        logger.info("Tip %s of %s from user %s to user %s", tip.id, amount, user_id, recipient_id)
        return tip

    def list_tips(self, thread_id):
        self._get_visible_thread(thread_id)
        return self.store.list_tips(thread_id)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_user_profile(self, user_id):
        """Reputation and block state of one user."""
        profile = self.store.get_user_profile(user_id)
        if profile is None:
            raise NotFoundError(f"User {user_id} does not exist")
        return profile


def _max_length(model, field_name):
    return model._meta.get_field(field_name).max_length


def get_forum_service() -> ForumService:
    """Service wired to the Django ORM, used by the API views."""
    return ForumService(OrmForumStore())
