"""
ASGI config.

HTTP goes to Django; WebSocket connections (at any path, the dashboard uses
the server root) go to the status feed.
"""
import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'backend.config.settings.base')

from backend.core.startup import enforce_environment  # noqa: E402

enforce_environment()

django_application = get_asgi_application()

from backend.monitoring.feed import StatusFeed  # noqa: E402

status_feed = StatusFeed()


async def application(scope, receive, send):
    if scope['type'] == 'websocket':
        await status_feed(scope, receive, send)
    else:
        await django_application(scope, receive, send)
