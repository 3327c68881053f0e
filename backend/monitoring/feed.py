"""
Status feed ASGI endpoint.

A client opens a WebSocket at the server root (optionally ?token=<access
JWT>). It immediately receives

    {"type": "system-update", "data": <SystemMonitor.snapshot()>}

and again every STATUS_FEED_INTERVAL seconds until it disconnects. Frames
sent by the client are read and discarded. Authenticated sockets are also
registered so notifications can be pushed to their user.
"""
import asyncio
import logging

from asgiref.sync import sync_to_async
from django.conf import settings
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.settings import api_settings
from rest_framework_simplejwt.tokens import AccessToken
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from .connections import ANONYMOUS, registry

logger = logging.getLogger('backend.monitoring')

MESSAGE_TYPE = 'system-update'
POLICY_VIOLATION = 1008


class InvalidToken(Exception):
    pass


def user_id_from_token(token):
    """User id carried by an access token; ANONYMOUS when no token was given"""
    if not token:
        return ANONYMOUS
    try:
        user_id = AccessToken(token)[api_settings.USER_ID_CLAIM]
    except (TokenError, KeyError) as e:
        raise InvalidToken(str(e))
    # Some simplejwt versions emit the id claim as a string
    return int(user_id) if isinstance(user_id, str) and user_id.isdigit() else user_id


class StatusFeed:

    def __init__(self, monitor=None, connections=None, interval=None):
        self._monitor = monitor
        self.connections = connections or registry
        self.interval = interval if interval is not None else settings.STATUS_FEED_INTERVAL

    @property
    def monitor(self):
        if self._monitor is None:
            from .system_monitor import SystemMonitor
            self._monitor = SystemMonitor(connections=self.connections)
        return self._monitor

    async def snapshot(self):
        return await sync_to_async(self.monitor.snapshot)()

    async def __call__(self, scope, receive, send):
        websocket = WebSocket(scope, receive=receive, send=send)
        try:
            user_id = user_id_from_token(websocket.query_params.get('token'))
        except InvalidToken as e:
            logger.info(f"Rejected status feed connection: {e}")
            await websocket.close(code=POLICY_VIOLATION)
            return

        await websocket.accept()
        self.connections.register(user_id, websocket)
        logger.info(f"Status feed client connected (user {user_id})")
        updates = asyncio.create_task(self._send_updates(websocket))
        try:
            while True:
                message = await websocket.receive()
                if message['type'] == 'websocket.disconnect':
                    break
        finally:
            updates.cancel()
            try:
                await updates
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Status feed updates for user {user_id} failed: {e}", exc_info=True)
            self.connections.unregister(user_id, websocket)
            logger.info(f"Status feed client disconnected (user {user_id})")

    async def _send_updates(self, websocket):
        while websocket.application_state == WebSocketState.CONNECTED:
            data = await self.snapshot()
            try:
                await websocket.send_json({'type': MESSAGE_TYPE, 'data': data})
            except (WebSocketDisconnect, RuntimeError, OSError):
                return
            await asyncio.sleep(self.interval)
