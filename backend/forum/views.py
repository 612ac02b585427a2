"""
DRF Views
=========

Thin HTTP layer over services.ForumService. Views validate request shape
with serializers, pass the authenticated user's id to the service and
render the result. ForumError subclasses raised by the service are turned
into responses by exceptions.custom_exception_handler.
"""

from rest_framework import generics, status, permissions
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.pagination import CursorPagination

from .exceptions import NotFoundError
from .queries import get_user_upvoted_items, get_visible_threads
from .serializers import (
    BlockUserSerializer,
    CommentSerializer,
    CommentCreateSerializer,
    FlagCreateSerializer,
    FlagResolveSerializer,
    FlagSerializer,
    ForumProfileSerializer,
    ModerationCheckSerializer,
    NotificationSerializer,
    ThreadCreateSerializer,
    ThreadDetailSerializer,
    ThreadListSerializer,
    TipCreateSerializer,
    TipSerializer,
    UpvoteToggleSerializer,
)
from .services import get_forum_service


def _user_id(request):
    if request.user and request.user.is_authenticated:
        return request.user.id
    return None


class ForumServiceMixin:
    """One ForumService per request."""
    service_factory = staticmethod(get_forum_service)

    @property
    def service(self):
        if not hasattr(self, '_service'):
            self._service = self.service_factory()
        return self._service


class ThreadPagination(CursorPagination):
    """Newest threads first, cursor-based for infinite scroll."""
    page_size = 20
    ordering = '-created_at'
    cursor_query_param = 'cursor'


class ThreadListCreateView(ForumServiceMixin, generics.ListCreateAPIView):
    """
    GET  /api/threads/?category=<name>   visible threads, newest first
    POST /api/threads/                   create a thread (auth)

    Body:
    {
        "title": "...",
        "content": "...",
        "category": "general",
        "tags": ["help"]
    }
    """
    serializer_class = ThreadListSerializer
    pagination_class = ThreadPagination
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def get_queryset(self):
        return get_visible_threads(self.request.query_params.get('category'))

    def create(self, request, *args, **kwargs):
        serializer = ThreadCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        thread = self.service.create_thread(
            _user_id(request),
            title=serializer.validated_data['title'],
            content=serializer.validated_data['content'],
            category=serializer.validated_data['category'],
            tags=serializer.validated_data.get('tags', []),
        )
        return Response(ThreadListSerializer(thread).data, status=status.HTTP_201_CREATED)


class ThreadDetailView(ForumServiceMixin, APIView):
    """
    GET /api/threads/<id>/

    Thread with its full nested comment tree. Two queries for thread and
    comments, plus the caller's upvotes and subscription when logged in.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, thread_id):
        loaded = self.service.get_thread_with_comment_tree(thread_id)
        if not loaded.thread.is_visible and not request.user.is_staff:
            raise NotFoundError(f"Thread {thread_id} does not exist")

        user_id = _user_id(request)
        user_upvoted_data = {}
        is_subscribed = False
        if user_id is not None:
            user_upvoted_data = get_user_upvoted_items(user_id, thread_id)
            is_subscribed = self.service.is_subscribed(user_id, thread_id)

        serializer = ThreadDetailSerializer(
            loaded.thread,
            context={
                'comment_tree': loaded.comments,
                'comment_count': loaded.comment_count,
                'user_upvoted_data': user_upvoted_data,
                'is_subscribed': is_subscribed,
                'request': request,
            }
        )
        return Response(serializer.data)


class CommentCreateView(ForumServiceMixin, APIView):
    """
    POST /api/threads/<thread_id>/comments/

    Body:
    {
        "content": "Comment text",
        "parent": 123  // optional, for replies
    }
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, thread_id):
        serializer = CommentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        comment = self.service.create_comment(
            _user_id(request),
            thread_id,
            serializer.validated_data['content'],
            parent_id=serializer.validated_data.get('parent'),
        )
        return Response(CommentSerializer(comment).data, status=status.HTTP_201_CREATED)


class UpvoteToggleView(ForumServiceMixin, APIView):
    """
    POST /api/upvotes/toggle/

    Body: {"thread_id": 1} or {"comment_id": 7}
    Returns: {"upvoted": true | false}
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = UpvoteToggleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        upvoted = self.service.toggle_upvote(
            _user_id(request),
            thread_id=serializer.validated_data.get('thread_id'),
            comment_id=serializer.validated_data.get('comment_id'),
        )
        return Response({'upvoted': upvoted})


class FlagCreateView(ForumServiceMixin, APIView):
    """
    POST /api/flags/

    Body: {"thread_id" | "comment_id": ..., "reason": "..."}
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = FlagCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        flag = self.service.flag_content(
            _user_id(request),
            serializer.validated_data['reason'],
            thread_id=serializer.validated_data.get('thread_id'),
            comment_id=serializer.validated_data.get('comment_id'),
        )
        return Response(FlagSerializer(flag).data, status=status.HTTP_201_CREATED)


class SubscriptionView(ForumServiceMixin, APIView):
    """
    GET  /api/threads/<thread_id>/subscription/   {"subscribed": bool}
    POST /api/threads/<thread_id>/subscription/   toggle, returns new state
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, thread_id):
        return Response({
            'subscribed': self.service.is_subscribed(_user_id(request), thread_id)
        })

    def post(self, request, thread_id):
        subscribed = self.service.toggle_subscription(_user_id(request), thread_id)
        return Response({'subscribed': subscribed})


class TipListCreateView(ForumServiceMixin, APIView):
    """
    GET  /api/threads/<thread_id>/tips/
    POST /api/threads/<thread_id>/tips/   {"amount": "2.50", "comment_id": 7, "message": "thanks"}
    """
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def get(self, request, thread_id):
        tips = self.service.list_tips(thread_id)
        return Response(TipSerializer(tips, many=True).data)

    def post(self, request, thread_id):
        serializer = TipCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        tip = self.service.send_tip(
            _user_id(request),
            thread_id,
            serializer.validated_data['amount'],
            comment_id=serializer.validated_data.get('comment_id'),
            message=serializer.validated_data.get('message', ''),
        )
        return Response(TipSerializer(tip).data, status=status.HTTP_201_CREATED)


class ModerationCheckView(ForumServiceMixin, APIView):
    """
    POST /api/moderation/check/

    AutoMod preview for a draft. Nothing is stored.
    Returns: {"status": "clean" | "flagged" | "blocked", "reason": ...}
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = ModerationCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.service.check_content(serializer.validated_data['text'])
        return Response({'status': result.status, 'reason': result.reason})


class FlagQueueView(ForumServiceMixin, APIView):
    """
    GET /api/moderation/flags/?status=pending

    Moderator queue. Staff only.
    """
    permission_classes = [permissions.IsAdminUser]

    def get(self, request):
        flags = self.service.list_flags(request.query_params.get('status'))
        return Response(FlagSerializer(flags, many=True).data)


class FlagResolveView(ForumServiceMixin, APIView):
    """
    POST /api/moderation/flags/<flag_id>/resolve/

    Body: {"hide_content": true}  // hide the flagged thread/comment
    """
    permission_classes = [permissions.IsAdminUser]

    def post(self, request, flag_id):
        serializer = FlagResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        flag = self.service.resolve_flag(
            flag_id,
            _user_id(request),
            hide_content=serializer.validated_data['hide_content'],
        )
        return Response(FlagSerializer(flag).data)


class BlockUserView(ForumServiceMixin, APIView):
    """
    POST /api/moderation/users/<user_id>/block/

    Body: {"blocked": false} to lift a block.
    """
    permission_classes = [permissions.IsAdminUser]

    def post(self, request, user_id):
        serializer = BlockUserSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        blocked = serializer.validated_data['blocked']
        self.service.block_user(_user_id(request), user_id, blocked=blocked)
        return Response({'user_id': user_id, 'blocked': blocked})


class NotificationListView(ForumServiceMixin, APIView):
    """
    GET /api/notifications/?unread=true
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        unread_only = request.query_params.get('unread', '').lower() in ('1', 'true', 'yes')
        notifications = self.service.list_notifications(_user_id(request), unread_only)
        return Response(NotificationSerializer(notifications, many=True).data)


class NotificationReadView(ForumServiceMixin, APIView):
    """
    POST /api/notifications/read/

    Marks every unread notification of the caller as read.
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        updated = self.service.mark_notifications_read(_user_id(request))
        return Response({'updated': updated})


class UserProfileView(ForumServiceMixin, APIView):
    """
    GET /api/users/<user_id>/profile/

    Returns: {"user": {...}, "reputation": 12, "is_blocked": false}
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, user_id):
        profile = self.service.get_user_profile(user_id)
        return Response(ForumProfileSerializer(profile).data)
