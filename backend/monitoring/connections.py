"""
Live status feed connections, grouped by user.

Sockets are registered from the event loop; push_to_user() may be called from
any thread (request handlers, on_commit hooks) and hands the send over to the
loop that owns the socket.
"""
import asyncio
import json
import logging
import threading

from django.core.serializers.json import DjangoJSONEncoder

logger = logging.getLogger('backend.monitoring')

ANONYMOUS = None


class ConnectionRegistry:

    def __init__(self):
        self._lock = threading.Lock()
        self._connections = {}

    def register(self, user_id, websocket, loop=None):
        loop = loop or asyncio.get_running_loop()
        with self._lock:
            self._connections.setdefault(user_id, {})[websocket] = loop
        logger.debug(f"Status feed connection registered for user {user_id}")

    def unregister(self, user_id, websocket):
        with self._lock:
            sockets = self._connections.get(user_id)
            if sockets is None:
                return
            sockets.pop(websocket, None)
            if not sockets:
                del self._connections[user_id]

    def connection_count(self, user_id=ANONYMOUS):
        with self._lock:
            if user_id is not ANONYMOUS:
                return len(self._connections.get(user_id, {}))
            return sum(len(sockets) for sockets in self._connections.values())

    def _targets(self, user_id=ANONYMOUS, everyone=False):
        with self._lock:
            if everyone:
                return [(user, ws, loop) for user, sockets in self._connections.items()
                        for ws, loop in sockets.items()]
            return [(user_id, ws, loop) for ws, loop in self._connections.get(user_id, {}).items()]

    async def _send(self, user_id, websocket, text):
        try:
            await websocket.send_text(text)
        except Exception as e:  # the peer is gone; starlette raises several types here
            logger.debug(f"Dropping dead status feed socket of user {user_id}: {e}")
            self.unregister(user_id, websocket)

    def _dispatch(self, targets, message):
        text = json.dumps(message, cls=DjangoJSONEncoder)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        scheduled = 0
        for user_id, websocket, loop in targets:
            if loop.is_closed():
                self.unregister(user_id, websocket)
                continue
            if loop is running:
                loop.create_task(self._send(user_id, websocket, text))
            else:
                asyncio.run_coroutine_threadsafe(self._send(user_id, websocket, text), loop)
            scheduled += 1
        return scheduled

    def push_to_user(self, user_id, message):
        """Queue `message` for every socket of the user; returns the number of sockets"""
        return self._dispatch(self._targets(user_id), message)

    def broadcast(self, message):
        return self._dispatch(self._targets(everyone=True), message)

    def clear(self):
        with self._lock:
            self._connections.clear()


registry = ConnectionRegistry()
