"""Store interface for the forum services.

ForumService talks to persistence only through ForumStore, so the same
service code runs against the Django ORM in production and against
InMemoryForumStore in tests and scripts. The protocol is
@runtime_checkable, so isinstance() works structurally.

Returned objects are ORM rows or in-memory records; both expose the same
attribute names (id, thread_id, parent_id, author_id, depth, ...).
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, ContextManager, Literal, Optional, Protocol, Sequence, runtime_checkable

from ..exceptions import ValidationError

TargetKind = Literal['thread', 'comment']


@dataclass(frozen=True)
class Target:
    """A thread or a comment that can be upvoted, flagged or hidden."""
    kind: TargetKind
    id: Any

    @classmethod
    def from_ids(cls, thread_id=None, comment_id=None) -> 'Target':
        if (thread_id is None) == (comment_id is None):
            raise ValidationError(
                "Exactly one of thread_id or comment_id must be provided"
            )
        if thread_id is not None:
            return cls('thread', thread_id)
        return cls('comment', comment_id)

    @property
    def field(self) -> str:
        return f"{self.kind}_id"


@runtime_checkable
class ForumStore(Protocol):
    """Persistence contract used by forum.services.ForumService."""

    # Threads and comments

    def create_thread(
        self,
        author_id: Any,
        title: str,
        content: str,
        category: str,
        tags: Sequence[str],
    ) -> Any:
        """Insert a visible thread with zeroed counters."""
        ...

    def get_thread(self, thread_id: Any) -> Optional[Any]:
        ...

    def list_threads(self, category: Optional[str] = None) -> list[Any]:
        """Visible threads, newest first."""
        ...

    def create_comment(
        self,
        thread_id: Any,
        author_id: Any,
        content: str,
        parent_id: Optional[Any],
        depth: int,
    ) -> Any:
        ...

    def get_comment(self, comment_id: Any) -> Optional[Any]:
        ...

    def list_comments(self, thread_id: Any) -> list[Any]:
        """All comments of a thread ordered by (created_at, id)."""
        ...

    def set_visibility(self, target: Target, visible: bool) -> None:
        ...

    # Upvotes

    def toggle_upvote(self, user_id: Any, target: Target) -> bool:
        """
        Atomically add or remove the (user, target) upvote.

        Returns the new state. The target's upvote_count moves with the row.
        """
        ...

    def has_upvote(self, user_id: Any, target: Target) -> bool:
        ...

    # Flags

    def create_flag(self, user_id: Any, target: Target, reason: str) -> Any:
        """Insert a pending flag and bump the target's flag_count."""
        ...

    def get_flag(self, flag_id: Any) -> Optional[Any]:
        ...

    def list_flags(self, status: Optional[str] = None) -> list[Any]:
        ...

    def resolve_flag(self, flag_id: Any, moderator_id: Any, resolution: str) -> Any:
        """
        Move a pending flag to resolved.

        Raises NotFoundError for unknown ids and ValidationError when the
        flag is not pending.
        """
        ...

    # Subscriptions

    def toggle_subscription(self, thread_id: Any, user_id: Any) -> bool:
        ...

    def is_subscribed(self, thread_id: Any, user_id: Any) -> bool:
        ...

    def list_subscribers(self, thread_id: Any) -> list[Any]:
        """User ids subscribed to a thread, in subscription order."""
        ...

    # Notifications

    def create_notifications(
        self,
        thread_id: Any,
        comment_id: Optional[Any],
        actor_id: Any,
        user_ids: Sequence[Any],
        type: str,
    ) -> list[Any]:
        ...

    def list_notifications(self, user_id: Any, unread_only: bool = False) -> list[Any]:
        """Newest first."""
        ...

    def mark_notifications_read(self, user_id: Any) -> int:
        ...

    # Tips

    def create_tip(
        self,
        from_user_id: Any,
        to_user_id: Any,
        thread_id: Any,
        comment_id: Optional[Any],
        amount: Decimal,
        message: str,
    ) -> Any:
        ...

    def list_tips(self, thread_id: Any) -> list[Any]:
        ...

    # Users

    def is_user_blocked(self, user_id: Any) -> bool:
        ...

    def set_user_blocked(self, user_id: Any, blocked: bool) -> None:
        """Raises NotFoundError for unknown users."""
        ...

    def is_moderator(self, user_id: Any) -> bool:
        ...

    def get_user_profile(self, user_id: Any) -> Optional[Any]:
        """Profile with reputation and block state; None for unknown users."""
        ...

    def add_reputation(self, user_id: Any, delta: int) -> None:
        ...

    # Transactions

    def atomic(self) -> ContextManager[None]:
        """
        Group several store calls into one unit of work.

        Either every write inside the block is kept or, when the block
        raises, none of them is.
        """
        ...
