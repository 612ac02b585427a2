"""
Data Models for the Agora forum
===============================

Threads own a tree of comments stored as an adjacency list (parent FK).
The tree is reassembled in Python by queries.build_comment_tree().

Engagement tables:
- Upvote: one row per (user, target). Target is a thread XOR a comment.
- Flag: a report against a thread XOR a comment, pending until a
  moderator resolves it.
- Subscription: one row per (thread, user).

Thread.upvote_count / flag_count and Comment.upvote_count / flag_count are
cached counts. They are only changed with F() expressions inside the same
transaction that inserts or deletes the Upvote/Flag row, so they always
equal the number of rows pointing at the target.

Indexes Strategy:
-----------------
- comment.thread_id + comment.created_at: fetch a thread's comments in order
- upvote (user, thread) / (user, comment): partial unique constraints
- flag.status + flag.created_at: moderator queue
- notification.user + notification.is_read: unread badge
"""

from django.conf import settings
from django.core.validators import MinLengthValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone


# Exactly one of thread / comment is set on Upvote and Flag rows
TARGET_XOR = (
    Q(thread__isnull=False, comment__isnull=True)
    | Q(thread__isnull=True, comment__isnull=False)
)


class Thread(models.Model):
    """Top-level forum post that owns a tree of comments."""
    author = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='threads',
        db_index=True
    )
    title = models.CharField(
        max_length=300,
        validators=[MinLengthValidator(3)]
    )
    content = models.TextField()
    category = models.CharField(max_length=100, db_index=True)
    tags = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True
    )
    updated_at = models.DateTimeField(auto_now=True)
    is_visible = models.BooleanField(default=True)

    upvote_count = models.PositiveIntegerField(default=0)
    flag_count = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['-created_at', 'category']),
        ]

    def __str__(self):
        return f"{self.title[:50]} ({self.category})"


class Comment(models.Model):
    """
    Reply inside a thread, possibly nested under another comment.

    depth is 0 for a root comment and parent.depth + 1 otherwise. It is set
    once at creation; a parent always exists before its replies, so the
    parent chain can never loop back on itself.
    """
    thread = models.ForeignKey(
        Thread,
        on_delete=models.CASCADE,
        related_name='comments',
        db_index=True
    )
    author = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='forum_comments'
    )
    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='replies',
        db_index=True
    )
    content = models.TextField()
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True
    )
    updated_at = models.DateTimeField(auto_now=True)
    is_visible = models.BooleanField(default=True)

    upvote_count = models.PositiveIntegerField(default=0)
    flag_count = models.PositiveIntegerField(default=0)
    depth = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['thread', 'created_at']),
            models.Index(fields=['parent', 'created_at']),
        ]

    def __str__(self):
        return f"Comment {self.pk} on thread {self.thread_id}"


class Upvote(models.Model):
    """
    One active upvote per (user, target).

    The partial unique constraints are what make toggle_upvote safe under
    concurrent retries: a second insert raises IntegrityError and the
    toggle turns into a removal.
    """
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='forum_upvotes'
    )
    thread = models.ForeignKey(
        Thread,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='upvotes'
    )
    comment = models.ForeignKey(
        Comment,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='upvotes'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=TARGET_XOR,
                name='upvote_single_target'
            ),
            models.UniqueConstraint(
                fields=['user', 'thread'],
                condition=Q(thread__isnull=False),
                name='unique_upvote_per_user_per_thread'
            ),
            models.UniqueConstraint(
                fields=['user', 'comment'],
                condition=Q(comment__isnull=False),
                name='unique_upvote_per_user_per_comment'
            ),
        ]

    def __str__(self):
        target = f"thread {self.thread_id}" if self.thread_id else f"comment {self.comment_id}"
        return f"user {self.user_id} upvoted {target}"


class Flag(models.Model):
    """
    User report against a thread or comment.

    status only ever moves pending -> resolved. resolution records what the
    moderator did with the report.
    """

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        RESOLVED = 'resolved', 'Resolved'

    class Resolution(models.TextChoices):
        NONE = '', 'None'
        DISMISSED = 'dismissed', 'Dismissed'
        HIDDEN = 'hidden', 'Content hidden'

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='forum_flags'
    )
    thread = models.ForeignKey(
        Thread,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='flags'
    )
    comment = models.ForeignKey(
        Comment,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='flags'
    )
    reason = models.TextField()
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING
    )
    resolution = models.CharField(
        max_length=20,
        choices=Resolution.choices,
        default=Resolution.NONE,
        blank=True
    )
    moderator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='resolved_forum_flags'
    )
    resolved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['created_at']
        constraints = [
            models.CheckConstraint(
                condition=TARGET_XOR,
                name='flag_single_target'
            ),
        ]
        indexes = [
            models.Index(fields=['status', 'created_at']),
        ]

    def __str__(self):
        return f"Flag {self.pk} ({self.status})"


class Subscription(models.Model):
    """Presence of a row means the user follows the thread."""
    thread = models.ForeignKey(
        Thread,
        on_delete=models.CASCADE,
        related_name='subscriptions'
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='forum_subscriptions'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['thread', 'user'],
                name='unique_subscription_per_user_per_thread'
            )
        ]

    def __str__(self):
        return f"user {self.user_id} follows thread {self.thread_id}"


class Notification(models.Model):
    """Notification record for a subscriber. Delivery happens elsewhere."""

    class Type(models.TextChoices):
        NEW_THREAD = 'new_thread', 'New thread'
        NEW_COMMENT = 'new_comment', 'New comment'
        UPVOTE = 'upvote', 'Upvote'
        FLAG = 'flag', 'Flag'

    thread = models.ForeignKey(
        Thread,
        on_delete=models.CASCADE,
        related_name='notifications'
    )
    comment = models.ForeignKey(
        Comment,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='notifications'
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='forum_notifications'
    )
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='+'
    )
    type = models.CharField(max_length=20, choices=Type.choices)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'is_read']),
        ]

    def __str__(self):
        return f"{self.type} for user {self.user_id}"


class Tip(models.Model):
    """Thank-you tip from one user to the author of a thread or comment."""
    from_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='forum_tips_sent'
    )
    to_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='forum_tips_received'
    )
    thread = models.ForeignKey(
        Thread,
        on_delete=models.CASCADE,
        related_name='tips'
    )
    comment = models.ForeignKey(
        Comment,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='tips'
    )
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(0.01)]
    )
    message = models.CharField(max_length=280, blank=True, default='')
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['created_at']

    def __str__(self):
        return f"{self.amount} from {self.from_user_id} to {self.to_user_id}"


class ForumProfile(models.Model):
    """
    Forum-specific state kept next to the auth user.

    reputation only moves with F() updates inside the transaction that
    creates the reply or tip earning it.
    """
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='forum_profile'
    )
    reputation = models.IntegerField(default=0)
    is_blocked = models.BooleanField(default=False)
    blocked_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"profile of user {self.user_id}"


# ============================================================================
# REPUTATION CONSTANTS
# ============================================================================

REPUTATION_PER_REPLY = 1  # thread author, per comment by someone else
REPUTATION_PER_TIP = 2    # tip recipient
