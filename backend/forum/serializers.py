"""
DRF Serializers
===============

Serializers here only validate request shape and render responses.
Business rules (AutoMod, depth, toggles) live in services.ForumService, so
create-serializers never call .save().
"""

from rest_framework import serializers
from django.contrib.auth import get_user_model

from .models import Thread, Comment, Flag, ForumProfile, Notification, Tip


class UserSerializer(serializers.ModelSerializer):
    """Minimal user representation for embedding in other objects."""

    class Meta:
        model = get_user_model()
        fields = ['id', 'username']
        read_only_fields = fields


class ThreadListSerializer(serializers.ModelSerializer):
    author = UserSerializer(read_only=True)

    class Meta:
        model = Thread
        fields = [
            'id',
            'title',
            'content',
            'category',
            'tags',
            'author',
            'upvote_count',
            'flag_count',
            'is_visible',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class ThreadCreateSerializer(serializers.Serializer):
    """Shape check only. AutoMod runs in the service."""
    title = serializers.CharField(max_length=300, trim_whitespace=True)
    content = serializers.CharField(allow_blank=True, trim_whitespace=False)
    category = serializers.CharField(max_length=100)
    tags = serializers.ListField(
        child=serializers.CharField(max_length=50),
        required=False,
        default=list
    )


class CommentSerializer(serializers.ModelSerializer):
    """
    A single comment, without replies.

    Hidden comments keep their place in the tree but not their text.
    """
    author = UserSerializer(read_only=True)
    content = serializers.SerializerMethodField()

    class Meta:
        model = Comment
        fields = [
            'id',
            'thread',
            'parent',
            'content',
            'author',
            'depth',
            'upvote_count',
            'flag_count',
            'is_visible',
            'created_at',
        ]
        read_only_fields = fields

    def get_content(self, obj):
        return obj.content if obj.is_visible else None


class CommentCreateSerializer(serializers.Serializer):
    content = serializers.CharField(allow_blank=True, trim_whitespace=False)
    parent = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class CommentTreeSerializer(serializers.Serializer):
    """
    Serializer for one queries.CommentNode.

    Structure:
    {
        "comment": { ...comment data... },
        "replies": [ ...nested CommentTreeSerializer... ]
    }
    """
    comment = CommentSerializer()
    replies = serializers.SerializerMethodField()

    def get_replies(self, obj):
        return CommentTreeSerializer(obj.replies, many=True).data


class ThreadDetailSerializer(ThreadListSerializer):
    """
    Thread with its nested comments.

    The tree is built by the view and passed in context so serialization
    issues no further queries.
    """
    comments = serializers.SerializerMethodField()
    comment_count = serializers.SerializerMethodField()
    user_upvoted = serializers.SerializerMethodField()
    upvoted_comment_ids = serializers.SerializerMethodField()
    is_subscribed = serializers.SerializerMethodField()

    class Meta(ThreadListSerializer.Meta):
        fields = ThreadListSerializer.Meta.fields + [
            'comments',
            'comment_count',
            'user_upvoted',
            'upvoted_comment_ids',
            'is_subscribed',
        ]
        read_only_fields = fields

    def get_comments(self, obj):
        return CommentTreeSerializer(self.context.get('comment_tree', []), many=True).data

    def get_comment_count(self, obj):
        return self.context.get('comment_count', 0)

    def get_user_upvoted(self, obj):
        return self.context.get('user_upvoted_data', {}).get('thread_upvoted', False)

    def get_upvoted_comment_ids(self, obj):
        ids = self.context.get('user_upvoted_data', {}).get('upvoted_comment_ids', set())
        return sorted(ids)

    def get_is_subscribed(self, obj):
        return self.context.get('is_subscribed', False)


class UpvoteToggleSerializer(serializers.Serializer):
    """
    Target for an upvote toggle.

    Exactly one of thread_id / comment_id; the service raises the same
    ValidationError for anything else.
    """
    thread_id = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    comment_id = serializers.IntegerField(required=False, allow_null=True, min_value=1)


class FlagCreateSerializer(UpvoteToggleSerializer):
    reason = serializers.CharField(allow_blank=True)


class FlagSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)

    class Meta:
        model = Flag
        fields = [
            'id',
            'thread',
            'comment',
            'user',
            'reason',
            'status',
            'resolution',
            'moderator',
            'resolved_at',
            'created_at',
        ]
        read_only_fields = fields


class FlagResolveSerializer(serializers.Serializer):
    hide_content = serializers.BooleanField(default=False)


class BlockUserSerializer(serializers.Serializer):
    blocked = serializers.BooleanField(default=True)


class ModerationCheckSerializer(serializers.Serializer):
    text = serializers.CharField(allow_blank=True, trim_whitespace=False)


class NotificationSerializer(serializers.ModelSerializer):

    class Meta:
        model = Notification
        fields = ['id', 'thread', 'comment', 'actor', 'type', 'is_read', 'created_at']
        read_only_fields = fields


class TipSerializer(serializers.ModelSerializer):

    class Meta:
        model = Tip
        fields = [
            'id',
            'from_user',
            'to_user',
            'thread',
            'comment',
            'amount',
            'message',
            'created_at',
        ]
        read_only_fields = fields


class TipCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    comment_id = serializers.IntegerField(required=False, allow_null=True, min_value=1)
    message = serializers.CharField(required=False, allow_blank=True, max_length=280, default='')


class ForumProfileSerializer(serializers.ModelSerializer):
    """Public forum profile: reputation earned from replies and tips."""
    user = UserSerializer(read_only=True)

    class Meta:
        model = ForumProfile
        fields = ['user', 'reputation', 'is_blocked']
        read_only_fields = fields
