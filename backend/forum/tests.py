"""
Tests for the Agora forum

Focus areas:
1. AutoMod determinism (and its accepted substring imprecision)
2. Comment tree reconstruction (orphans, deep chains, cycles)
3. Toggle idempotency for upvotes and subscriptions, on both stores
4. Gated publication: rejected text never reaches the store
5. Flag lifecycle, blocking, tips, notifications, reputation
6. Hidden content and all-or-nothing writes
7. HTTP status codes of the API
"""

import random
import threading
from decimal import Decimal
from io import StringIO
from types import SimpleNamespace

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from .automod import AutoModerator, ModerationResult, moderate
from .exceptions import (
    AuthenticationError,
    CommentTreeError,
    ModerationRejected,
    NotFoundError,
    PermissionDeniedError,
    StoreError,
    ValidationError,
)
from .models import Thread, Comment, Upvote, Flag, Subscription, Notification, Tip, ForumProfile
from .queries import build_comment_tree, count_nodes, find_depth_mismatches, iter_nodes
from .services import ForumService, get_forum_service
from .stores import ForumStore, InMemoryForumStore, OrmForumStore, Target

User = get_user_model()


def _comment(comment_id, parent_id=None, depth=0):
    return SimpleNamespace(id=comment_id, parent_id=parent_id, depth=depth)


class AutoModTestCase(SimpleTestCase):
    """Deny-list screening is a pure function of the text."""

    def setUp(self):
        self.automod = AutoModerator()

    def test_banned_term_is_flagged_with_reason(self):
        result = self.automod.moderate("this is spam content")
        self.assertEqual(result.status, 'flagged')
        self.assertIn('spam', result.reason)

    def test_short_message_is_flagged(self):
        result = self.automod.moderate("ok")
        self.assertEqual(result.status, 'flagged')
        self.assertIn('short', result.reason)

    def test_empty_message_is_flagged(self):
        self.assertEqual(self.automod.moderate("").status, 'flagged')

    def test_clean_message(self):
        result = self.automod.moderate("This is a perfectly fine message")
        self.assertEqual(result, ModerationResult('clean'))
        self.assertTrue(result.is_clean)
        self.assertIsNone(result.reason)

    def test_matching_is_case_insensitive(self):
        self.assertEqual(self.automod.moderate("Buy SPAM now").status, 'flagged')

    def test_substring_inside_longer_word_still_matches(self):
        """Known imprecision: no word boundaries."""
        result = self.automod.moderate("No seas tontorron, amigo")
        self.assertEqual(result.status, 'flagged')
        self.assertIn('tonto', result.reason)

    def test_first_listed_term_wins(self):
        result = self.automod.moderate("idiota spam")
        self.assertEqual(result.reason, "Banned term: spam")

    def test_banned_term_beats_length_check(self):
        automod = AutoModerator(flagged_terms=['ab'], min_length=10)
        self.assertEqual(automod.moderate("ab").reason, "Banned term: ab")

    def test_blocked_terms_take_precedence(self):
        automod = AutoModerator(blocked_terms=['scam'])
        result = automod.moderate("spam and scam")
        self.assertEqual(result.status, 'blocked')
        self.assertIn('scam', result.reason)

    def test_deterministic(self):
        results = {self.automod.moderate("this is spam content") for _ in range(5)}
        self.assertEqual(len(results), 1)

    @override_settings(FORUM={'AUTOMOD_FLAGGED_TERMS': ['verboten'], 'AUTOMOD_MIN_LENGTH': 1})
    def test_module_level_moderate_reads_settings(self):
        self.assertEqual(moderate("das ist verboten").status, 'flagged')
        self.assertEqual(moderate("spam").status, 'clean')
        self.assertEqual(moderate("a").status, 'clean')


class CommentTreeTestCase(SimpleTestCase):
    """build_comment_tree works on any objects with id / parent_id."""

    def test_single_level(self):
        tree = build_comment_tree([_comment(1), _comment(2)])
        self.assertEqual([node.comment.id for node in tree], [1, 2])
        self.assertEqual(tree[0].replies, [])

    def test_nested(self):
        tree = build_comment_tree([
            _comment(1),
            _comment(2, parent_id=1, depth=1),
            _comment(3, parent_id=2, depth=2),
            _comment(4),
        ])
        self.assertEqual(len(tree), 2)
        self.assertEqual(tree[0].replies[0].comment.id, 2)
        self.assertEqual(tree[0].replies[0].replies[0].comment.id, 3)
        self.assertEqual(tree[1].comment.id, 4)

    def test_children_listed_before_parent(self):
        tree = build_comment_tree([_comment(2, parent_id=1, depth=1), _comment(1)])
        self.assertEqual(len(tree), 1)
        self.assertEqual(tree[0].replies[0].comment.id, 2)

    def test_sibling_order_follows_input(self):
        flat = [_comment(1)] + [_comment(i, parent_id=1, depth=1) for i in (5, 3, 9, 4)]
        tree = build_comment_tree(flat)
        self.assertEqual([n.comment.id for n in tree[0].replies], [5, 3, 9, 4])

    def test_orphan_becomes_root(self):
        tree = build_comment_tree([_comment(1), _comment(2, parent_id=999, depth=3)])
        self.assertEqual([node.comment.id for node in tree], [1, 2])

    def test_chain_of_ten(self):
        flat = [_comment(1)] + [_comment(i, parent_id=i - 1, depth=i - 1) for i in range(2, 11)]
        tree = build_comment_tree(flat)

        self.assertEqual(len(tree), 1)
        node, length = tree[0], 1
        while node.replies:
            self.assertEqual(len(node.replies), 1)
            node = node.replies[0]
            length += 1
        self.assertEqual(length, 10)

    def test_very_deep_chain(self):
        depth = 5000
        flat = [_comment(1)] + [_comment(i, parent_id=i - 1, depth=i - 1) for i in range(2, depth + 1)]
        tree = build_comment_tree(flat)
        self.assertEqual(len(tree), 1)
        self.assertEqual(count_nodes(tree), depth)
        self.assertEqual(find_depth_mismatches(tree), [])

    def test_random_forest_keeps_every_comment(self):
        rng = random.Random(7)
        flat = []
        for i in range(1, 201):
            parent = rng.choice([None] + [c.id for c in flat]) if flat else None
            flat.append(_comment(i, parent_id=parent))
        rng.shuffle(flat)

        tree = build_comment_tree(flat)
        self.assertEqual(count_nodes(tree), len(flat))

        by_id = {c.id: c for c in flat}
        for comment in flat:
            steps, current = 0, comment
            while current.parent_id is not None:
                current = by_id[current.parent_id]
                steps += 1
                self.assertLessEqual(steps, len(flat))

    def test_cycle_is_rejected(self):
        with self.assertRaises(CommentTreeError) as ctx:
            build_comment_tree([_comment(1), _comment(2, parent_id=3), _comment(3, parent_id=2)])
        self.assertEqual(sorted(ctx.exception.comment_ids), [2, 3])

    def test_self_parent_is_rejected(self):
        with self.assertRaises(CommentTreeError):
            build_comment_tree([_comment(1, parent_id=1)])

    def test_depth_mismatch_detection(self):
        tree = build_comment_tree([
            _comment(1),
            _comment(2, parent_id=1, depth=1),
            _comment(3, parent_id=2, depth=5),
        ])
        self.assertEqual(find_depth_mismatches(tree), [3])

    def test_iter_nodes_is_preorder(self):
        tree = build_comment_tree([
            _comment(1), _comment(2, parent_id=1, depth=1), _comment(3), _comment(4, parent_id=2, depth=2),
        ])
        self.assertEqual([n.comment.id for n in iter_nodes(tree)], [1, 2, 4, 3])


class InMemoryServiceTestCase(SimpleTestCase):
    """ForumService rules, exercised against InMemoryForumStore."""

    def setUp(self):
        self.store = InMemoryForumStore(known_user_ids={1, 2, 3, 99}, moderator_ids={99})
        self.service = ForumService(self.store, AutoModerator())
        self.author, self.reader, self.other, self.mod = 1, 2, 3, 99
        self.thread = self.service.create_thread(
            self.author, 'Budget 2025', 'How should we split the budget?', 'governance', ['budget']
        )

    def test_store_satisfies_protocol(self):
        self.assertIsInstance(self.store, ForumStore)
        self.assertIsInstance(OrmForumStore(), ForumStore)

    def test_toggle_upvote_twice_restores_counter(self):
        before = self.thread.upvote_count
        self.assertTrue(self.service.toggle_upvote(self.reader, thread_id=self.thread.id))
        self.assertEqual(self.store.get_thread(self.thread.id).upvote_count, before + 1)
        self.assertFalse(self.service.toggle_upvote(self.reader, thread_id=self.thread.id))
        self.assertEqual(self.store.get_thread(self.thread.id).upvote_count, before)

    def test_toggle_upvote_needs_exactly_one_target(self):
        comment = self.service.create_comment(self.reader, self.thread.id, 'Split it evenly')
        with self.assertRaises(ValidationError):
            self.service.toggle_upvote(self.reader)
        with self.assertRaises(ValidationError):
            self.service.toggle_upvote(self.reader, thread_id=self.thread.id, comment_id=comment.id)

    def test_toggle_upvote_requires_user(self):
        with self.assertRaises(AuthenticationError):
            self.service.toggle_upvote(None, thread_id=self.thread.id)

    def test_toggle_upvote_unknown_target(self):
        with self.assertRaises(NotFoundError):
            self.service.toggle_upvote(self.reader, comment_id=12345)

    def test_concurrent_toggles_stay_consistent(self):
        workers = [
            threading.Thread(
                target=self.service.toggle_upvote,
                args=(self.reader,),
                kwargs={'thread_id': self.thread.id}
            )
            for _ in range(20)
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        target = Target('thread', self.thread.id)
        self.assertFalse(self.store.has_upvote(self.reader, target))
        self.assertEqual(self.store.get_thread(self.thread.id).upvote_count, 0)

    def test_comment_depth_follows_parent(self):
        root = self.service.create_comment(self.reader, self.thread.id, 'Root comment')
        reply = self.service.create_comment(self.other, self.thread.id, 'A reply', parent_id=root.id)
        nested = self.service.create_comment(self.author, self.thread.id, 'Deeper', parent_id=reply.id)
        self.assertEqual((root.depth, reply.depth, nested.depth), (0, 1, 2))

    def test_reply_to_comment_in_other_thread(self):
        other_thread = self.service.create_thread(self.other, 'Other thread', 'Another topic', 'general')
        foreign = self.service.create_comment(self.other, other_thread.id, 'Elsewhere')
        with self.assertRaises(ValidationError):
            self.service.create_comment(self.reader, self.thread.id, 'Reply', parent_id=foreign.id)

    def test_reply_to_unknown_parent(self):
        with self.assertRaises(NotFoundError):
            self.service.create_comment(self.reader, self.thread.id, 'Reply', parent_id=4242)

    def test_comment_on_unknown_thread(self):
        with self.assertRaises(NotFoundError):
            self.service.create_comment(self.reader, 4242, 'Hello there')

    def test_anonymous_writes_rejected(self):
        with self.assertRaises(AuthenticationError):
            self.service.create_thread(None, 'Title', 'Some content', 'general')
        with self.assertRaises(AuthenticationError):
            self.service.create_comment(None, self.thread.id, 'Hello there')

    def test_rejected_comment_is_not_persisted(self):
        before = len(self.store.list_comments(self.thread.id))
        with self.assertRaises(ModerationRejected) as ctx:
            self.service.create_comment(self.reader, self.thread.id, 'this is spam content')
        self.assertEqual(ctx.exception.result.status, 'flagged')
        self.assertEqual(len(self.store.list_comments(self.thread.id)), before)

        with self.assertRaises(ModerationRejected):
            self.service.create_comment(self.reader, self.thread.id, 'ok')
        self.assertEqual(len(self.store.list_comments(self.thread.id)), before)

    def test_rejected_thread_is_not_persisted(self):
        before = len(self.store.list_threads())
        with self.assertRaises(ModerationRejected):
            self.service.create_thread(self.reader, 'Hello all', 'cheap spam here', 'general')
        with self.assertRaises(ModerationRejected):
            self.service.create_thread(self.reader, 'idiota', 'Perfectly fine body', 'general')
        self.assertEqual(len(self.store.list_threads()), before)

    def test_thread_tags_are_deduplicated(self):
        thread = self.service.create_thread(self.reader, 'Tags', 'Tag test body', 'general', ['a', ' a', 'b', ''])
        self.assertEqual(thread.tags, ['a', 'b'])

    def test_get_thread_with_comments(self):
        first = self.service.create_comment(self.reader, self.thread.id, 'First!')
        second = self.service.create_comment(self.other, self.thread.id, 'Second', parent_id=first.id)
        loaded = self.service.get_thread_with_comments(self.thread.id)
        self.assertEqual(loaded.thread.id, self.thread.id)
        self.assertEqual([c.id for c in loaded.comments], [first.id, second.id])

        with self.assertRaises(NotFoundError):
            self.service.get_thread_with_comments(4242)

    def test_get_thread_with_comment_tree(self):
        root = self.service.create_comment(self.reader, self.thread.id, 'Root comment')
        self.service.create_comment(self.other, self.thread.id, 'Reply here', parent_id=root.id)
        loaded = self.service.get_thread_with_comment_tree(self.thread.id, verify_depth=True)
        self.assertEqual(loaded.comment_count, 2)
        self.assertEqual(len(loaded.comments), 1)
        self.assertEqual(len(loaded.comments[0].replies), 1)

    def test_subscription_toggle(self):
        self.assertFalse(self.service.is_subscribed(self.reader, self.thread.id))
        self.assertTrue(self.service.toggle_subscription(self.reader, self.thread.id))
        self.assertTrue(self.service.is_subscribed(self.reader, self.thread.id))
        self.assertFalse(self.service.toggle_subscription(self.reader, self.thread.id))
        self.assertFalse(self.service.is_subscribed(self.reader, self.thread.id))

    def test_new_comment_notifies_other_subscribers(self):
        self.service.toggle_subscription(self.author, self.thread.id)
        self.service.toggle_subscription(self.reader, self.thread.id)

        comment = self.service.create_comment(self.reader, self.thread.id, 'Notify everyone')

        self.assertEqual(self.service.subscribers(self.thread.id), [self.author, self.reader])
        author_notes = self.service.list_notifications(self.author)
        self.assertEqual(len(author_notes), 1)
        self.assertEqual(author_notes[0].comment_id, comment.id)
        self.assertEqual(author_notes[0].actor_id, self.reader)
        self.assertEqual(author_notes[0].type, 'new_comment')
        self.assertEqual(self.service.list_notifications(self.reader), [])

        self.assertEqual(self.service.mark_notifications_read(self.author), 1)
        self.assertEqual(self.service.list_notifications(self.author, unread_only=True), [])

    def test_flag_lifecycle(self):
        flag = self.service.flag_content(self.reader, 'Off topic', thread_id=self.thread.id)
        self.assertEqual(flag.status, 'pending')
        self.assertEqual(self.store.get_thread(self.thread.id).flag_count, 1)

        second = self.service.flag_content(self.reader, 'Still off topic', thread_id=self.thread.id)
        self.assertNotEqual(flag.id, second.id)
        self.assertEqual(self.store.get_thread(self.thread.id).flag_count, 2)

        resolved = self.service.resolve_flag(flag.id, self.mod)
        self.assertEqual(resolved.status, 'resolved')
        self.assertEqual(resolved.resolution, 'dismissed')
        self.assertEqual(resolved.moderator_id, self.mod)
        self.assertIsNotNone(resolved.resolved_at)
        self.assertTrue(self.store.get_thread(self.thread.id).is_visible)

        with self.assertRaises(ValidationError):
            self.service.resolve_flag(flag.id, self.mod)

        self.assertEqual([f.id for f in self.service.list_flags('pending')], [second.id])

    def test_flag_requires_reason(self):
        with self.assertRaises(ValidationError):
            self.service.flag_content(self.reader, '  ', thread_id=self.thread.id)

    def test_resolve_with_hide(self):
        comment = self.service.create_comment(self.reader, self.thread.id, 'Borderline remark')
        flag = self.service.flag_content(self.other, 'Rude', comment_id=comment.id)
        self.service.resolve_flag(flag.id, self.mod, hide_content=True)
        self.assertFalse(self.store.get_comment(comment.id).is_visible)

    def test_resolve_unknown_flag(self):
        with self.assertRaises(NotFoundError):
            self.service.resolve_flag(4242, self.mod)

    def test_blocked_user_cannot_write(self):
        self.service.block_user(self.mod, self.reader)
        with self.assertRaises(PermissionDeniedError):
            self.service.create_comment(self.reader, self.thread.id, 'Let me in')
        with self.assertRaises(PermissionDeniedError):
            self.service.toggle_upvote(self.reader, thread_id=self.thread.id)

        self.service.block_user(self.mod, self.reader, blocked=False)
        self.service.create_comment(self.reader, self.thread.id, 'Back again')

    def test_block_unknown_user(self):
        with self.assertRaises(NotFoundError):
            self.service.block_user(self.mod, 4242)

    def test_tip_goes_to_author(self):
        tip = self.service.send_tip(self.reader, self.thread.id, '2.5', message='Thanks!')
        self.assertEqual(tip.to_user_id, self.author)
        self.assertEqual(tip.amount, Decimal('2.50'))

        comment = self.service.create_comment(self.other, self.thread.id, 'Helpful answer')
        tip = self.service.send_tip(self.reader, self.thread.id, 1, comment_id=comment.id)
        self.assertEqual(tip.to_user_id, self.other)
        self.assertEqual(len(self.service.list_tips(self.thread.id)), 2)

    def test_tip_validation(self):
        with self.assertRaises(ValidationError):
            self.service.send_tip(self.author, self.thread.id, 5)
        for amount in (0, -1, 'abc', 'NaN', 10**9):
            with self.assertRaises(ValidationError):
                self.service.send_tip(self.reader, self.thread.id, amount)
        with self.assertRaises(ModerationRejected):
            self.service.send_tip(self.reader, self.thread.id, 1, message='spam spam')

    def test_check_content_does_not_persist(self):
        result = self.service.check_content('this is spam content')
        self.assertEqual(result.status, 'flagged')
        self.assertEqual(len(self.store.list_threads()), 1)

    def test_hidden_thread_behaves_as_missing(self):
        comment = self.service.create_comment(self.reader, self.thread.id, 'Before hiding')
        self.store.set_visibility(Target('thread', self.thread.id), False)

        with self.assertRaises(NotFoundError):
            self.service.create_comment(self.reader, self.thread.id, 'After hiding')
        with self.assertRaises(NotFoundError):
            self.service.toggle_upvote(self.reader, thread_id=self.thread.id)
        with self.assertRaises(NotFoundError):
            self.service.toggle_upvote(self.reader, comment_id=comment.id)
        with self.assertRaises(NotFoundError):
            self.service.flag_content(self.reader, 'Off topic', thread_id=self.thread.id)
        with self.assertRaises(NotFoundError):
            self.service.toggle_subscription(self.reader, self.thread.id)
        with self.assertRaises(NotFoundError):
            self.service.send_tip(self.reader, self.thread.id, 1)
        with self.assertRaises(NotFoundError):
            self.service.list_tips(self.thread.id)

        self.assertEqual(len(self.store.list_comments(self.thread.id)), 1)
        self.assertEqual(self.store.get_thread(self.thread.id).upvote_count, 0)

    def test_hidden_comment_behaves_as_missing(self):
        comment = self.service.create_comment(self.other, self.thread.id, 'Borderline remark')
        self.store.set_visibility(Target('comment', comment.id), False)

        with self.assertRaises(NotFoundError):
            self.service.create_comment(self.reader, self.thread.id, 'A reply', parent_id=comment.id)
        with self.assertRaises(NotFoundError):
            self.service.toggle_upvote(self.reader, comment_id=comment.id)
        with self.assertRaises(NotFoundError):
            self.service.send_tip(self.reader, self.thread.id, 1, comment_id=comment.id)

        # The thread itself stays open
        self.assertTrue(self.service.toggle_upvote(self.reader, thread_id=self.thread.id))

    def test_failed_fan_out_leaves_no_comment(self):
        class FailingNotificationStore(InMemoryForumStore):
            def create_notifications(self, *args, **kwargs):
                raise StoreError("notification write failed")

        store = FailingNotificationStore()
        service = ForumService(store, AutoModerator())
        thread = service.create_thread(self.author, 'Budget 2025', 'How should we split it?', 'governance')
        service.toggle_subscription(self.author, thread.id)

        with self.assertRaises(StoreError):
            service.create_comment(self.reader, thread.id, 'Split it evenly')

        self.assertEqual(store.list_comments(thread.id), [])
        self.assertEqual(service.get_user_profile(self.author).reputation, 0)

        # Retrying after the failure does not leave duplicates behind
        store.create_notifications = lambda **kwargs: []
        service.create_comment(self.reader, thread.id, 'Split it evenly')
        self.assertEqual(len(store.list_comments(thread.id)), 1)

    def test_replies_and_tips_earn_reputation(self):
        self.service.create_comment(self.reader, self.thread.id, 'Good question')
        self.service.create_comment(self.other, self.thread.id, 'Agreed, good question')
        self.assertEqual(self.service.get_user_profile(self.author).reputation, 2)

        self.service.create_comment(self.author, self.thread.id, 'Thanks both')
        self.assertEqual(self.service.get_user_profile(self.author).reputation, 2)

        self.service.send_tip(self.reader, self.thread.id, 1)
        self.assertEqual(self.service.get_user_profile(self.author).reputation, 4)
        self.assertEqual(self.service.get_user_profile(self.reader).reputation, 0)

        with self.assertRaises(NotFoundError):
            self.service.get_user_profile(4242)

    def test_only_moderators_resolve_and_block(self):
        flag = self.service.flag_content(self.reader, 'Off topic', thread_id=self.thread.id)

        with self.assertRaises(PermissionDeniedError):
            self.service.resolve_flag(flag.id, self.other, hide_content=True)
        with self.assertRaises(AuthenticationError):
            self.service.resolve_flag(flag.id, None)
        with self.assertRaises(PermissionDeniedError):
            self.service.block_user(self.author, self.reader)

        self.assertEqual(self.store.get_flag(flag.id).status, 'pending')
        self.assertTrue(self.store.get_thread(self.thread.id).is_visible)
        self.assertFalse(self.store.is_user_blocked(self.reader))

    def test_over_long_text_is_a_validation_error(self):
        with self.assertRaises(ValidationError):
            self.service.send_tip(self.reader, self.thread.id, 1, message='x' * 281)
        with self.assertRaises(ValidationError):
            self.service.create_thread(self.reader, 'x' * 301, 'Fine body text', 'general')
        with self.assertRaises(ValidationError):
            self.service.create_thread(self.reader, 'Fine title', 'Fine body text', 'c' * 101)

        self.assertEqual(self.service.list_tips(self.thread.id), [])
        self.service.send_tip(self.reader, self.thread.id, 1, message='x' * 280)


class OrmStoreTestCase(TestCase):
    """
    Same contracts against the Django ORM store.

    Counters are checked against the actual Upvote/Flag rows.
    """

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.reader = User.objects.create_user('reader', 'r@test.com', 'pass')
        self.service = get_forum_service()
        self.thread = self.service.create_thread(
            self.author.id, 'Test thread', 'Content for testing', 'general', ['test']
        )

    def test_toggle_upvote_twice(self):
        self.assertTrue(self.service.toggle_upvote(self.reader.id, thread_id=self.thread.id))
        self.thread.refresh_from_db()
        self.assertEqual(self.thread.upvote_count, 1)
        self.assertEqual(Upvote.objects.filter(thread=self.thread).count(), 1)

        self.assertFalse(self.service.toggle_upvote(self.reader.id, thread_id=self.thread.id))
        self.thread.refresh_from_db()
        self.assertEqual(self.thread.upvote_count, 0)
        self.assertFalse(Upvote.objects.filter(thread=self.thread).exists())

    def test_comment_upvote_counter_matches_rows(self):
        comment = self.service.create_comment(self.reader.id, self.thread.id, 'Nice thread')
        self.service.toggle_upvote(self.author.id, comment_id=comment.id)
        self.service.toggle_upvote(self.reader.id, comment_id=comment.id)
        comment.refresh_from_db()
        self.assertEqual(comment.upvote_count, 2)
        self.assertEqual(comment.upvote_count, Upvote.objects.filter(comment=comment).count())
        self.assertTrue(self.service.has_upvoted(self.author.id, comment_id=comment.id))

    def test_duplicate_upvote_rejected_by_database(self):
        Upvote.objects.create(user=self.reader, thread=self.thread)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Upvote.objects.create(user=self.reader, thread=self.thread)

    def test_upvote_needs_single_target(self):
        comment = self.service.create_comment(self.reader.id, self.thread.id, 'Nice thread')
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Upvote.objects.create(user=self.reader, thread=self.thread, comment=comment)

    def test_toggle_removes_row_inserted_elsewhere(self):
        """A row that already exists (other tab) is removed, not duplicated."""
        Upvote.objects.create(user=self.reader, thread=self.thread)
        Thread.objects.filter(id=self.thread.id).update(upvote_count=1)

        self.assertFalse(self.service.toggle_upvote(self.reader.id, thread_id=self.thread.id))
        self.thread.refresh_from_db()
        self.assertEqual(self.thread.upvote_count, 0)

    def test_rejected_comment_not_persisted(self):
        with self.assertRaises(ModerationRejected):
            self.service.create_comment(self.reader.id, self.thread.id, 'this is spam content')
        self.assertEqual(Comment.objects.filter(thread=self.thread).count(), 0)

    def test_thread_and_comments_in_two_queries(self):
        parent = None
        for i in range(30):
            parent = self.service.create_comment(
                self.reader.id, self.thread.id, f'Comment {i}',
                parent_id=parent.id if parent and i % 3 else None
            )

        with self.assertNumQueries(2):
            loaded = self.service.get_thread_with_comment_tree(self.thread.id, verify_depth=True)
        self.assertEqual(loaded.comment_count, 30)
        self.assertEqual(count_nodes(loaded.comments), 30)

    def test_flag_and_resolve(self):
        moderator = User.objects.create_user('mod', 'm@test.com', 'pass', is_staff=True)
        flag = self.service.flag_content(self.reader.id, 'Spam-like', thread_id=self.thread.id)
        self.thread.refresh_from_db()
        self.assertEqual(self.thread.flag_count, 1)
        self.assertEqual(flag.status, Flag.Status.PENDING)

        self.service.resolve_flag(flag.id, moderator.id, hide_content=True)
        flag.refresh_from_db()
        self.thread.refresh_from_db()
        self.assertEqual(flag.status, Flag.Status.RESOLVED)
        self.assertEqual(flag.resolution, Flag.Resolution.HIDDEN)
        self.assertEqual(flag.moderator, moderator)
        self.assertFalse(self.thread.is_visible)
        self.assertEqual(self.service.list_threads(), [])

        with self.assertRaises(ValidationError):
            self.service.resolve_flag(flag.id, moderator.id)

    def test_subscription_and_notifications(self):
        self.assertTrue(self.service.toggle_subscription(self.author.id, self.thread.id))
        self.assertEqual(Subscription.objects.count(), 1)

        comment = self.service.create_comment(self.reader.id, self.thread.id, 'Hello subscribers')
        notification = Notification.objects.get(user=self.author)
        self.assertEqual(notification.comment, comment)
        self.assertEqual(notification.actor, self.reader)
        self.assertFalse(notification.is_read)

        self.assertFalse(self.service.toggle_subscription(self.author.id, self.thread.id))
        self.assertFalse(self.service.is_subscribed(self.author.id, self.thread.id))

    def test_block_user(self):
        moderator = User.objects.create_user('mod', 'm@test.com', 'pass', is_staff=True)
        self.service.block_user(moderator.id, self.reader.id)
        with self.assertRaises(PermissionDeniedError):
            self.service.create_comment(self.reader.id, self.thread.id, 'Let me in')
        with self.assertRaises(NotFoundError):
            self.service.block_user(moderator.id, 4242)

    def test_tip(self):
        tip = self.service.send_tip(self.reader.id, self.thread.id, '3.00')
        self.assertEqual(Tip.objects.get(pk=tip.pk).to_user, self.author)

    def test_failed_fan_out_rolls_back_comment(self):
        class FailingNotificationStore(OrmForumStore):
            def create_notifications(self, *args, **kwargs):
                raise StoreError("notification write failed")

        service = ForumService(FailingNotificationStore())
        service.toggle_subscription(self.author.id, self.thread.id)

        with self.assertRaises(StoreError):
            service.create_comment(self.reader.id, self.thread.id, 'Split it evenly')

        self.assertEqual(Comment.objects.filter(thread=self.thread).count(), 0)
        self.assertFalse(ForumProfile.objects.filter(user=self.author, reputation__gt=0).exists())

    def test_reputation_from_replies_and_tips(self):
        self.service.create_comment(self.reader.id, self.thread.id, 'Nice thread')
        self.service.send_tip(self.reader.id, self.thread.id, '1.00')

        self.assertEqual(ForumProfile.objects.get(user=self.author).reputation, 3)
        self.assertEqual(self.service.get_user_profile(self.author.id).reputation, 3)
        self.assertEqual(self.service.get_user_profile(self.reader.id).reputation, 0)
        self.assertFalse(ForumProfile.objects.filter(user=self.reader).exists())

    def test_non_staff_cannot_moderate(self):
        flag = self.service.flag_content(self.reader.id, 'Off topic', thread_id=self.thread.id)
        with self.assertRaises(PermissionDeniedError):
            self.service.resolve_flag(flag.id, self.author.id, hide_content=True)
        with self.assertRaises(PermissionDeniedError):
            self.service.block_user(self.author.id, self.reader.id)

        flag.refresh_from_db()
        self.assertEqual(flag.status, Flag.Status.PENDING)
        self.assertFalse(self.service.store.is_user_blocked(self.reader.id))

    def test_long_tip_message_rejected_before_insert(self):
        with self.assertRaises(ValidationError):
            self.service.send_tip(self.reader.id, self.thread.id, '1.00', message='x' * 281)
        self.assertFalse(Tip.objects.exists())


class ApiTestCase(APITestCase):
    """HTTP layer: status codes and payload shapes."""

    def setUp(self):
        self.author = User.objects.create_user('author', 'a@test.com', 'pass')
        self.reader = User.objects.create_user('reader', 'r@test.com', 'pass')
        self.moderator = User.objects.create_user('mod', 'm@test.com', 'pass', is_staff=True)
        self.service = get_forum_service()
        self.thread = self.service.create_thread(
            self.author.id, 'API thread', 'Content for the API', 'general'
        )

    def test_create_thread(self):
        self.client.force_authenticate(user=self.reader)
        response = self.client.post(reverse('thread-list'), {
            'title': 'New thread',
            'content': 'This is a perfectly fine message',
            'category': 'general',
            'tags': ['help'],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['author']['username'], 'reader')
        self.assertEqual(response.data['tags'], ['help'])

    def test_create_thread_requires_login(self):
        response = self.client.post(reverse('thread-list'), {
            'title': 'New thread', 'content': 'Fine content', 'category': 'general'
        }, format='json')
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_moderation_reject_returns_reason(self):
        self.client.force_authenticate(user=self.reader)
        before = Thread.objects.count()
        response = self.client.post(reverse('thread-list'), {
            'title': 'New thread', 'content': 'this is spam content', 'category': 'general'
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['status'], 'flagged')
        self.assertIn('spam', response.data['reason'])
        self.assertEqual(Thread.objects.count(), before)

    def test_thread_list_hides_invisible_threads(self):
        Thread.objects.create(author=self.author, title='Hidden', content='x' * 10,
                              category='general', is_visible=False)
        response = self.client.get(reverse('thread-list'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([t['id'] for t in response.data['results']], [self.thread.id])

    def test_thread_detail_with_tree(self):
        root = self.service.create_comment(self.reader.id, self.thread.id, 'Root comment')
        self.service.create_comment(self.author.id, self.thread.id, 'Reply here', parent_id=root.id)
        self.service.toggle_upvote(self.reader.id, comment_id=root.id)

        self.client.force_authenticate(user=self.reader)
        response = self.client.get(reverse('thread-detail', args=[self.thread.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['comment_count'], 2)
        self.assertEqual(len(response.data['comments']), 1)
        node = response.data['comments'][0]
        self.assertEqual(node['comment']['id'], root.id)
        self.assertEqual(node['replies'][0]['comment']['depth'], 1)
        self.assertEqual(response.data['upvoted_comment_ids'], [root.id])
        self.assertFalse(response.data['user_upvoted'])

    def test_thread_detail_not_found(self):
        response = self.client.get(reverse('thread-detail', args=[4242]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'not_found')

    def test_create_reply(self):
        root = self.service.create_comment(self.reader.id, self.thread.id, 'Root comment')
        self.client.force_authenticate(user=self.author)
        response = self.client.post(
            reverse('comment-create', args=[self.thread.id]),
            {'content': 'Thanks for the comment', 'parent': root.id},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['depth'], 1)
        self.assertEqual(response.data['parent'], root.id)

    def test_comment_on_missing_thread(self):
        self.client.force_authenticate(user=self.author)
        response = self.client.post(
            reverse('comment-create', args=[4242]), {'content': 'Hello there'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_upvote_toggle_endpoint(self):
        self.client.force_authenticate(user=self.reader)
        url = reverse('upvote-toggle')

        first = self.client.post(url, {'thread_id': self.thread.id}, format='json')
        second = self.client.post(url, {'thread_id': self.thread.id}, format='json')

        self.assertEqual(first.data, {'upvoted': True})
        self.assertEqual(second.data, {'upvoted': False})
        self.thread.refresh_from_db()
        self.assertEqual(self.thread.upvote_count, 0)

    def test_upvote_toggle_rejects_ambiguous_target(self):
        comment = self.service.create_comment(self.reader.id, self.thread.id, 'Root comment')
        self.client.force_authenticate(user=self.reader)
        url = reverse('upvote-toggle')

        both = self.client.post(url, {'thread_id': self.thread.id, 'comment_id': comment.id}, format='json')
        neither = self.client.post(url, {}, format='json')

        self.assertEqual(both.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(neither.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(both.data['code'], 'validation_error')

    def test_flag_queue_and_resolve(self):
        self.client.force_authenticate(user=self.reader)
        response = self.client.post(reverse('flag-create'), {
            'thread_id': self.thread.id, 'reason': 'Misleading'
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        flag_id = response.data['id']

        self.assertEqual(self.client.get(reverse('flag-queue')).status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.moderator)
        queue = self.client.get(reverse('flag-queue'), {'status': 'pending'})
        self.assertEqual([f['id'] for f in queue.data], [flag_id])

        resolved = self.client.post(
            reverse('flag-resolve', args=[flag_id]), {'hide_content': True}, format='json'
        )
        self.assertEqual(resolved.status_code, status.HTTP_200_OK)
        self.assertEqual(resolved.data['status'], 'resolved')

        again = self.client.post(reverse('flag-resolve', args=[flag_id]), {}, format='json')
        self.assertEqual(again.status_code, status.HTTP_400_BAD_REQUEST)

        self.client.force_authenticate(user=self.reader)
        hidden = self.client.get(reverse('thread-detail', args=[self.thread.id]))
        self.assertEqual(hidden.status_code, status.HTTP_404_NOT_FOUND)

    def test_blocked_user_gets_403(self):
        self.client.force_authenticate(user=self.moderator)
        response = self.client.post(reverse('user-block', args=[self.reader.id]), {}, format='json')
        self.assertEqual(response.data, {'user_id': self.reader.id, 'blocked': True})

        self.client.force_authenticate(user=self.reader)
        response = self.client.post(
            reverse('comment-create', args=[self.thread.id]), {'content': 'Hello there'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], 'permission_denied')

    def test_subscription_endpoints(self):
        self.client.force_authenticate(user=self.reader)
        url = reverse('thread-subscription', args=[self.thread.id])

        self.assertEqual(self.client.get(url).data, {'subscribed': False})
        self.assertEqual(self.client.post(url).data, {'subscribed': True})
        self.assertEqual(self.client.get(url).data, {'subscribed': True})
        self.assertEqual(self.client.post(url).data, {'subscribed': False})

    def test_notifications_endpoints(self):
        self.service.toggle_subscription(self.author.id, self.thread.id)
        self.service.create_comment(self.reader.id, self.thread.id, 'Ping the author')

        self.client.force_authenticate(user=self.author)
        response = self.client.get(reverse('notification-list'), {'unread': 'true'})
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['type'], 'new_comment')

        self.assertEqual(self.client.post(reverse('notification-read')).data, {'updated': 1})
        self.assertEqual(self.client.get(reverse('notification-list'), {'unread': 'true'}).data, [])

    def test_tips_endpoints(self):
        self.client.force_authenticate(user=self.reader)
        url = reverse('thread-tips', args=[self.thread.id])

        response = self.client.post(url, {'amount': '2.50', 'message': 'Thanks!'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['to_user'], self.author.id)

        self.client.force_authenticate(user=self.author)
        self_tip = self.client.post(url, {'amount': '1.00'}, format='json')
        self.assertEqual(self_tip.status_code, status.HTTP_400_BAD_REQUEST)

        self.client.force_authenticate(user=None)
        self.assertEqual(len(self.client.get(url).data), 1)

    def test_moderation_check(self):
        response = self.client.post(reverse('moderation-check'), {'text': 'ok'}, format='json')
        self.assertEqual(response.data['status'], 'flagged')

        response = self.client.post(
            reverse('moderation-check'), {'text': 'This is a perfectly fine message'}, format='json'
        )
        self.assertEqual(response.data, {'status': 'clean', 'reason': None})

    def test_hidden_thread_rejects_reads_and_writes(self):
        Thread.objects.filter(id=self.thread.id).update(is_visible=False)

        tips = self.client.get(reverse('thread-tips', args=[self.thread.id]))
        self.assertEqual(tips.status_code, status.HTTP_404_NOT_FOUND)

        self.client.force_authenticate(user=self.reader)
        comment = self.client.post(
            reverse('comment-create', args=[self.thread.id]), {'content': 'Still here?'}, format='json'
        )
        upvote = self.client.post(reverse('upvote-toggle'), {'thread_id': self.thread.id}, format='json')
        subscription = self.client.post(reverse('thread-subscription', args=[self.thread.id]))

        self.assertEqual(comment.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(upvote.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(subscription.status_code, status.HTTP_404_NOT_FOUND)
        self.assertFalse(Comment.objects.filter(thread=self.thread).exists())
        self.assertFalse(Upvote.objects.exists())
        self.assertFalse(Subscription.objects.exists())

    def test_user_profile(self):
        self.service.create_comment(self.reader.id, self.thread.id, 'Interesting thread')

        response = self.client.get(reverse('user-profile', args=[self.author.id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['user']['username'], 'author')
        self.assertEqual(response.data['reputation'], 1)
        self.assertFalse(response.data['is_blocked'])

        missing = self.client.get(reverse('user-profile', args=[4242]))
        self.assertEqual(missing.status_code, status.HTTP_404_NOT_FOUND)


class SeedCommandTestCase(TestCase):

    def test_seed_keeps_counters_consistent(self):
        out = StringIO()
        call_command('seed_forum', users=4, threads=3, comments=12, seed=1, stdout=out)

        self.assertIn('Successfully created', out.getvalue())
        self.assertEqual(Thread.objects.count(), 3)
        self.assertEqual(Comment.objects.count(), 12)

        for thread in Thread.objects.all():
            self.assertEqual(thread.upvote_count, Upvote.objects.filter(thread=thread).count())
        for comment in Comment.objects.all():
            self.assertEqual(comment.upvote_count, Upvote.objects.filter(comment=comment).count())
            expected = comment.parent.depth + 1 if comment.parent else 0
            self.assertEqual(comment.depth, expected)
