"""
Django ORM implementation of ForumStore
=======================================

CONCURRENCY STRATEGY:
---------------------
Toggles (upvote, subscription) run as one transaction:

1. DELETE the (user, target) row. If a row went away, decrement and stop.
2. Otherwise INSERT it inside a savepoint. The partial unique constraint
   rejects a duplicate created by a concurrent request (double click,
   second tab); that IntegrityError means "already exists", so the
   toggle removes the row instead.

Counters only move with F() expressions next to the row change, in the
same transaction, so upvote_count/flag_count always match the rows.

atomic() hands out transaction.atomic() so the service can group a
comment with its notifications and reputation change.
"""

import functools
import logging

from django.contrib.auth import get_user_model
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from ..exceptions import NotFoundError, StoreError, ValidationError
from ..models import (
    Comment,
    Flag,
    ForumProfile,
    Notification,
    Subscription,
    Thread,
    Tip,
    Upvote,
)
from ..queries import get_all_comments_for_thread, get_thread_with_author, get_visible_threads

logger = logging.getLogger(__name__)


def _store_errors(method):
    """Re-raise database failures as StoreError."""
    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return method(*args, **kwargs)
        except DatabaseError as exc:
            logger.error("%s failed: %s", method.__name__, exc)
            raise StoreError(f"Data store failure during {method.__name__}") from exc
    return wrapper


class OrmForumStore:
    """ForumStore backed by the Django models in forum.models."""

    @staticmethod
    def _target_model(target):
        return Thread if target.kind == 'thread' else Comment

    # ------------------------------------------------------------------
    # Threads and comments
    # ------------------------------------------------------------------

    @_store_errors
    def create_thread(self, author_id, title, content, category, tags):
        return Thread.objects.create(
            author_id=author_id,
            title=title,
            content=content,
            category=category,
            tags=list(tags),
        )

    @_store_errors
    def get_thread(self, thread_id):
        return get_thread_with_author(thread_id)

    @_store_errors
    def list_threads(self, category=None):
        return list(get_visible_threads(category))

    @_store_errors
    def create_comment(self, thread_id, author_id, content, parent_id, depth):
        return Comment.objects.create(
            thread_id=thread_id,
            author_id=author_id,
            content=content,
            parent_id=parent_id,
            depth=depth,
        )

    @_store_errors
    def get_comment(self, comment_id):
        return Comment.objects.filter(id=comment_id).first()

    @_store_errors
    def list_comments(self, thread_id):
        return get_all_comments_for_thread(thread_id)

    @_store_errors
    def set_visibility(self, target, visible):
        self._target_model(target).objects.filter(id=target.id).update(
            is_visible=visible
        )

    # ------------------------------------------------------------------
    # Upvotes
    # ------------------------------------------------------------------

    @_store_errors
    def toggle_upvote(self, user_id, target):
        model = self._target_model(target)
        lookup = {'user_id': user_id, target.field: target.id}

        with transaction.atomic():
            if self._remove_upvote(model, lookup, target.id):
                return False

            try:
                with transaction.atomic():
                    Upvote.objects.create(**lookup)
            except IntegrityError:
                # A concurrent toggle inserted first: already exists, remove instead
                self._remove_upvote(model, lookup, target.id)
                return False

            model.objects.filter(id=target.id).update(
                upvote_count=F('upvote_count') + 1
            )
            return True

    @staticmethod
    def _remove_upvote(model, lookup, target_id):
        deleted_count, _ = Upvote.objects.filter(**lookup).delete()
        if deleted_count:
            model.objects.filter(id=target_id, upvote_count__gt=0).update(
                upvote_count=F('upvote_count') - deleted_count
            )
        return deleted_count > 0

    @_store_errors
    def has_upvote(self, user_id, target):
        return Upvote.objects.filter(user_id=user_id, **{target.field: target.id}).exists()

    # ------------------------------------------------------------------
    # Flags
    # ------------------------------------------------------------------

    @_store_errors
    def create_flag(self, user_id, target, reason):
        with transaction.atomic():
            flag = Flag.objects.create(
                user_id=user_id,
                reason=reason,
                **{target.field: target.id}
            )
            self._target_model(target).objects.filter(id=target.id).update(
                flag_count=F('flag_count') + 1
            )
        return flag

    @_store_errors
    def get_flag(self, flag_id):
        return Flag.objects.filter(id=flag_id).first()

    @_store_errors
    def list_flags(self, status=None):
        queryset = Flag.objects.select_related('user', 'thread', 'comment')
        if status:
            queryset = queryset.filter(status=status)
        return list(queryset.order_by('created_at', 'id'))

    @_store_errors
    def resolve_flag(self, flag_id, moderator_id, resolution):
        with transaction.atomic():
            flag = Flag.objects.select_for_update().filter(id=flag_id).first()
            if flag is None:
                raise NotFoundError(f"Flag {flag_id} does not exist")
            if flag.status != Flag.Status.PENDING:
                raise ValidationError(f"Flag {flag_id} is already {flag.status}")

            flag.status = Flag.Status.RESOLVED
            flag.resolution = resolution
            flag.moderator_id = moderator_id
            flag.resolved_at = timezone.now()
            flag.save(update_fields=['status', 'resolution', 'moderator', 'resolved_at'])
        return flag

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    @_store_errors
    def toggle_subscription(self, thread_id, user_id):
        lookup = {'thread_id': thread_id, 'user_id': user_id}

        with transaction.atomic():
            deleted_count, _ = Subscription.objects.filter(**lookup).delete()
            if deleted_count:
                return False

            try:
                with transaction.atomic():
                    Subscription.objects.create(**lookup)
            except IntegrityError:
                Subscription.objects.filter(**lookup).delete()
                return False
            return True

    @_store_errors
    def is_subscribed(self, thread_id, user_id):
        return Subscription.objects.filter(thread_id=thread_id, user_id=user_id).exists()

    @_store_errors
    def list_subscribers(self, thread_id):
        return list(
            Subscription.objects
            .filter(thread_id=thread_id)
            .order_by('created_at', 'id')
            .values_list('user_id', flat=True)
        )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    @_store_errors
    def create_notifications(self, thread_id, comment_id, actor_id, user_ids, type):
        return Notification.objects.bulk_create([
            Notification(
                thread_id=thread_id,
                comment_id=comment_id,
                user_id=user_id,
                actor_id=actor_id,
                type=type,
            )
            for user_id in user_ids
        ])

    @_store_errors
    def list_notifications(self, user_id, unread_only=False):
        queryset = Notification.objects.filter(user_id=user_id)
        if unread_only:
            queryset = queryset.filter(is_read=False)
        return list(queryset.order_by('-created_at', '-id'))

    @_store_errors
    def mark_notifications_read(self, user_id):
        return Notification.objects.filter(user_id=user_id, is_read=False).update(is_read=True)

    # ------------------------------------------------------------------
    # Tips
    # ------------------------------------------------------------------

    @_store_errors
    def create_tip(self, from_user_id, to_user_id, thread_id, comment_id, amount, message):
        return Tip.objects.create(
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            thread_id=thread_id,
            comment_id=comment_id,
            amount=amount,
            message=message,
        )

    @_store_errors
    def list_tips(self, thread_id):
        return list(Tip.objects.filter(thread_id=thread_id).order_by('created_at', 'id'))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @_store_errors
    def is_user_blocked(self, user_id):
        return ForumProfile.objects.filter(user_id=user_id, is_blocked=True).exists()

    @_store_errors
    def set_user_blocked(self, user_id, blocked):
        if not get_user_model().objects.filter(pk=user_id).exists():
            raise NotFoundError(f"User {user_id} does not exist")
        ForumProfile.objects.update_or_create(
            user_id=user_id,
            defaults={
                'is_blocked': blocked,
                'blocked_at': timezone.now() if blocked else None,
            }
        )

    @_store_errors
    def is_moderator(self, user_id):
        return get_user_model().objects.filter(pk=user_id, is_staff=True, is_active=True).exists()

    @_store_errors
    def get_user_profile(self, user_id):
        user = get_user_model().objects.filter(pk=user_id).first()
        if user is None:
            return None
        profile = ForumProfile.objects.filter(user=user).first()
        # Users who never earned reputation or got blocked have no row yet
        return profile or ForumProfile(user=user)

    @_store_errors
    def add_reputation(self, user_id, delta):
        profile, _ = ForumProfile.objects.get_or_create(user_id=user_id)
        ForumProfile.objects.filter(pk=profile.pk).update(
            reputation=F('reputation') + delta
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def atomic(self):
        return transaction.atomic()
