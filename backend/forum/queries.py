"""
Comment tree assembly and read queries
======================================

Loading a thread costs two queries regardless of nesting depth:

1. the thread row
2. every comment of the thread, ordered by created_at

The nested structure is then rebuilt in Python by build_comment_tree(),
which works on any objects exposing `id` and `parent_id` (ORM rows or the
in-memory store's records).
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from django.db.models import Q

from .exceptions import CommentTreeError
from .models import Thread, Comment, Upvote


@dataclass
class CommentNode:
    """One comment plus its direct replies, in input order."""
    comment: Any
    replies: list['CommentNode'] = field(default_factory=list)


def build_comment_tree(flat_comments: Iterable[Any]) -> list[CommentNode]:
    """
    Build nested tree structure from flat list.

    Algorithm: O(n), two passes over a lookup dict {id -> node}.

    - Siblings keep their relative input order. Pass comments sorted by
      created_at for chronological threads.
    - A comment whose parent_id is not in the input (orphan) becomes a root,
      so no comment is ever dropped.
    - Parent links that loop back on themselves raise CommentTreeError.

    Example Input (flat):
        [c1(parent=None), c2(parent=c1), c3(parent=c1)]

    Example Output (nested):
        [CommentNode(c1, replies=[CommentNode(c2), CommentNode(c3)])]
    """
    flat_comments = list(flat_comments)

    nodes = {}
    for comment in flat_comments:
        nodes[comment.id] = CommentNode(comment=comment)

    root_nodes = []
    for comment in flat_comments:
        node = nodes[comment.id]
        if comment.parent_id is None:
            root_nodes.append(node)
            continue

        parent_node = nodes.get(comment.parent_id)
        if parent_node is None:
            # Orphan: parent missing from this thread's rows
            root_nodes.append(node)
        else:
            parent_node.replies.append(node)

    reachable = count_nodes(root_nodes)
    if reachable != len(nodes):
        attached = {node.comment.id for node in iter_nodes(root_nodes)}
        looped = [comment_id for comment_id in nodes if comment_id not in attached]
        raise CommentTreeError(
            f"{len(looped)} comment(s) form a parent cycle",
            comment_ids=looped
        )

    return root_nodes


def iter_nodes(roots: Iterable[CommentNode]):
    """Depth-first, pre-order walk. Iterative, so depth is unbounded."""
    stack = list(reversed(list(roots)))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.replies))


def count_nodes(roots: Iterable[CommentNode]) -> int:
    return sum(1 for _ in iter_nodes(roots))


def find_depth_mismatches(roots: Iterable[CommentNode]) -> list[Any]:
    """
    Return ids of comments whose stored depth disagrees with their position.

    Roots are expected at depth 0 unless they are orphans, whose true depth
    cannot be known; orphan roots are taken as-is and their subtree is
    checked relative to them.
    """
    mismatched = []
    stack = []
    for root in roots:
        expected = 0 if root.comment.parent_id is None else root.comment.depth
        stack.append((root, expected))

    while stack:
        node, expected = stack.pop()
        if node.comment.depth != expected:
            mismatched.append(node.comment.id)
        for reply in node.replies:
            stack.append((reply, expected + 1))

    return mismatched


def verify_comment_tree(roots: list[CommentNode]) -> list[CommentNode]:
    """Raise CommentTreeError if any stored depth is inconsistent."""
    mismatched = find_depth_mismatches(roots)
    if mismatched:
        raise CommentTreeError(
            f"Stored depth is inconsistent for {len(mismatched)} comment(s)",
            comment_ids=mismatched
        )
    return roots


# ============================================================================
# ORM READ QUERIES (used by stores.orm.OrmForumStore)
# ============================================================================

def get_thread_with_author(thread_id: int) -> Optional[Thread]:
    return (
        Thread.objects
        .select_related('author')
        .filter(id=thread_id)
        .first()
    )


def get_all_comments_for_thread(thread_id: int) -> list[Comment]:
    """
    Fetch ALL comments for a thread in a SINGLE query.

    SELECT comment.*, user.*
    FROM comment
    INNER JOIN user ON comment.author_id = user.id
    WHERE comment.thread_id = %s
    ORDER BY comment.created_at, comment.id
    """
    return list(
        Comment.objects
        .filter(thread_id=thread_id)
        .select_related('author')
        .order_by('created_at', 'id')
    )


def get_visible_threads(category: Optional[str] = None):
    queryset = Thread.objects.select_related('author').filter(is_visible=True)
    if category:
        queryset = queryset.filter(category=category)
    return queryset.order_by('-created_at')


def get_user_upvoted_items(user_id: int, thread_id: int) -> dict:
    """
    Everything a user has upvoted inside one thread, in one query.

    Returns: {
        'thread_upvoted': bool,
        'upvoted_comment_ids': set[int]
    }
    """
    rows = Upvote.objects.filter(
        user_id=user_id
    ).filter(
        Q(thread_id=thread_id) | Q(comment__thread_id=thread_id)
    ).values_list('thread_id', 'comment_id')

    thread_upvoted = False
    upvoted_comment_ids = set()
    for upvoted_thread_id, comment_id in rows:
        if upvoted_thread_id == thread_id:
            thread_upvoted = True
        elif comment_id is not None:
            upvoted_comment_ids.add(comment_id)

    return {
        'thread_upvoted': thread_upvoted,
        'upvoted_comment_ids': upvoted_comment_ids
    }
