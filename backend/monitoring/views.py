from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from backend.core.access import IsAdminRole
from .system_monitor import SystemMonitor

_monitor = None


def get_monitor():
    global _monitor
    if _monitor is None:
        _monitor = SystemMonitor()
    return _monitor


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def system_health(request):
    """Same snapshot the status feed pushes (admin only)"""
    return Response(get_monitor().snapshot())
