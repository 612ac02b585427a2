"""
Forum App URL Configuration
"""
from django.urls import path
from .views import (
    BlockUserView,
    CommentCreateView,
    FlagCreateView,
    FlagQueueView,
    FlagResolveView,
    ModerationCheckView,
    NotificationListView,
    NotificationReadView,
    SubscriptionView,
    ThreadDetailView,
    ThreadListCreateView,
    TipListCreateView,
    UpvoteToggleView,
    UserProfileView,
)

urlpatterns = [
    # Threads
    path('threads/', ThreadListCreateView.as_view(), name='thread-list'),
    path('threads/<int:thread_id>/', ThreadDetailView.as_view(), name='thread-detail'),
    path('threads/<int:thread_id>/comments/', CommentCreateView.as_view(), name='comment-create'),
    path('threads/<int:thread_id>/subscription/', SubscriptionView.as_view(), name='thread-subscription'),
    path('threads/<int:thread_id>/tips/', TipListCreateView.as_view(), name='thread-tips'),

    # Engagement
    path('upvotes/toggle/', UpvoteToggleView.as_view(), name='upvote-toggle'),
    path('flags/', FlagCreateView.as_view(), name='flag-create'),

    # Moderation
    path('moderation/check/', ModerationCheckView.as_view(), name='moderation-check'),
    path('moderation/flags/', FlagQueueView.as_view(), name='flag-queue'),
    path('moderation/flags/<int:flag_id>/resolve/', FlagResolveView.as_view(), name='flag-resolve'),
    path('moderation/users/<int:user_id>/block/', BlockUserView.as_view(), name='user-block'),

    # Notifications
    path('notifications/', NotificationListView.as_view(), name='notification-list'),
    path('notifications/read/', NotificationReadView.as_view(), name='notification-read'),

    # Profiles
    path('users/<int:user_id>/profile/', UserProfileView.as_view(), name='user-profile'),
]
