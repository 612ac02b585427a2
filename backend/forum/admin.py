"""
Django Admin Configuration for Forum Models
"""
from django.contrib import admin
from .models import Thread, Comment, Upvote, Flag, Subscription, Notification, Tip, ForumProfile


@admin.register(Thread)
class ThreadAdmin(admin.ModelAdmin):
    list_display = ['title', 'author', 'category', 'is_visible', 'upvote_count', 'flag_count', 'created_at']
    list_filter = ['is_visible', 'category', 'created_at']
    search_fields = ['title', 'content', 'author__username']
    readonly_fields = ['upvote_count', 'flag_count', 'created_at', 'updated_at']


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ['id', 'thread', 'author', 'parent', 'depth', 'is_visible', 'upvote_count', 'created_at']
    list_filter = ['is_visible', 'created_at', 'depth']
    search_fields = ['content', 'author__username']
    readonly_fields = ['upvote_count', 'flag_count', 'depth', 'created_at', 'updated_at']


@admin.register(Upvote)
class UpvoteAdmin(admin.ModelAdmin):
    list_display = ['user', 'thread', 'comment', 'created_at']
    list_filter = ['created_at']
    search_fields = ['user__username']

    def has_change_permission(self, request, obj=None):
        # Counters on Thread/Comment only move through the toggle service
        return False


@admin.register(Flag)
class FlagAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'thread', 'comment', 'status', 'resolution', 'moderator', 'created_at']
    list_filter = ['status', 'resolution', 'created_at']
    search_fields = ['reason', 'user__username']
    readonly_fields = ['user', 'thread', 'comment', 'reason', 'created_at']


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ['user', 'thread', 'created_at']
    search_fields = ['user__username', 'thread__title']


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ['user', 'type', 'thread', 'comment', 'actor', 'is_read', 'created_at']
    list_filter = ['type', 'is_read']


@admin.register(Tip)
class TipAdmin(admin.ModelAdmin):
    list_display = ['from_user', 'to_user', 'amount', 'thread', 'comment', 'created_at']
    list_filter = ['created_at']
    readonly_fields = ['from_user', 'to_user', 'thread', 'comment', 'amount', 'message', 'created_at']


@admin.register(ForumProfile)
class ForumProfileAdmin(admin.ModelAdmin):
    list_display = ['user', 'reputation', 'is_blocked', 'blocked_at']
    readonly_fields = ['reputation']
    list_filter = ['is_blocked']
    search_fields = ['user__username']
