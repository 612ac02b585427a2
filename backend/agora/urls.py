"""
Agora URL Configuration
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'Agora Forum API Server',
        'version': '1.0',
        'endpoints': {
            'threads': '/api/threads/',
            'thread': '/api/threads/<id>/',
            'upvotes': '/api/upvotes/toggle/',
            'flags': '/api/flags/',
            'moderation': '/api/moderation/',
            'notifications': '/api/notifications/',
        },
        'admin': '/admin/',
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('admin/', admin.site.urls),
    path('api/', include('forum.urls')),
]
