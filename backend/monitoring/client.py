"""
Reconnecting status feed client.

    client = StatusFeedClient('ws://localhost:5000/')
    await client.connect()
    ...
    client.data          # last system-update payload
    client.is_connected
    await client.close()

State machine: DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED.
When the connection drops or cannot be opened, exactly one reconnect is
scheduled after `reconnect_delay` seconds, and this repeats until close().
"""
import asyncio
import json
import logging
from enum import Enum

import aiohttp

logger = logging.getLogger('backend.monitoring.client')

RECONNECT_DELAY = 5.0
CONNECTION_ERROR = 'WebSocket connection error'


class ConnectionState(str, Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    CLOSED = 'closed'


class AiohttpConnection:
    def __init__(self, websocket, session=None):
        self.websocket = websocket
        self.session = session

    async def receive(self):
        """Next text frame, or None once the socket is closed"""
        while True:
            message = await self.websocket.receive()
            if message.type == aiohttp.WSMsgType.TEXT:
                return message.data
            if message.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING,
                                aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                return None

    async def close(self):
        await self.websocket.close()
        if self.session is not None:
            await self.session.close()


async def aiohttp_connector(url):
    session = aiohttp.ClientSession()
    try:
        websocket = await session.ws_connect(url, heartbeat=30)
    except BaseException:
        await session.close()
        raise
    return AiohttpConnection(websocket, session)


class StatusFeedClient:

    def __init__(self, url, connector=None, reconnect_delay=RECONNECT_DELAY, on_update=None):
        self.url = url
        self.connector = connector or aiohttp_connector
        self.reconnect_delay = reconnect_delay
        self.on_update = on_update
        self.state = ConnectionState.DISCONNECTED
        self.data = None
        self.error = None
        self.connect_attempts = 0
        self._connection = None
        self._reader = None
        self._timer = None
        self._pending_connect = None
        # Bumped by every connect attempt; an attempt that is no longer the
        # latest when its socket opens closes that socket
        self._generation = 0

    @property
    def is_connected(self):
        return self.state == ConnectionState.CONNECTED

    @property
    def reconnect_pending(self):
        return self._timer is not None

    async def connect(self):
        if self.state in (ConnectionState.CLOSED, ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return
        self._cancel_timer()
        self.state = ConnectionState.CONNECTING
        self.connect_attempts += 1
        self._generation += 1
        generation = self._generation
        try:
            connection = await self.connector(self.url)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            if generation != self._generation:
                return
            logger.warning(f"Status feed connection to {self.url} failed: {e}")
            self.error = CONNECTION_ERROR
            self.state = ConnectionState.DISCONNECTED
            self._schedule_reconnect()
            return

        if self.state == ConnectionState.CLOSED or generation != self._generation:
            logger.debug(f"Discarding superseded status feed connection to {self.url}")
            await connection.close()
            return
        self._connection = connection
        self.state = ConnectionState.CONNECTED
        self.error = None
        logger.info(f"Status feed connected to {self.url}")
        self._reader = asyncio.create_task(self._read(connection))

    async def _read(self, connection):
        try:
            while True:
                raw = await connection.receive()
                if raw is None:
                    break
                self._handle_frame(raw)
        except (aiohttp.ClientError, OSError) as e:
            logger.warning(f"Status feed connection lost: {e}")
            self.error = CONNECTION_ERROR
        finally:
            # Replaced or closed on purpose: nothing to recover
            if connection is self._connection:
                self._connection = None
                self._reader = None
                self.state = ConnectionState.DISCONNECTED
                self._schedule_reconnect()

    def _handle_frame(self, raw):
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            return
        if isinstance(message, dict) and message.get('type') == 'system-update':
            self.data = message.get('data')
            if self.on_update is not None:
                try:
                    self.on_update(self.data)
                except Exception as e:
                    logger.error(f"Status feed update callback failed: {e}", exc_info=True)

    def _schedule_reconnect(self):
        if self.state == ConnectionState.CLOSED:
            return
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.reconnect_delay, self._reconnect_due)

    def _reconnect_due(self):
        self._timer = None
        self._pending_connect = asyncio.ensure_future(self.connect())

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _drop_connection(self):
        connection, reader = self._connection, self._reader
        self._connection = None
        self._reader = None
        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if connection is not None:
            try:
                await connection.close()
            except (aiohttp.ClientError, OSError) as e:
                logger.debug(f"Error while closing status feed connection: {e}")

    async def reconnect(self):
        """Drop the current socket and any pending retry, then connect again"""
        if self.state == ConnectionState.CLOSED:
            return
        self._cancel_timer()
        self._cancel_pending_connect()
        await self._drop_connection()
        self.state = ConnectionState.DISCONNECTED
        await self.connect()

    async def close(self):
        self.state = ConnectionState.CLOSED
        self._cancel_timer()
        await self._drop_connection()
        self._cancel_pending_connect()

    def _cancel_pending_connect(self):
        pending, self._pending_connect = self._pending_connect, None
        if pending is not None and not pending.done() and pending is not asyncio.current_task():
            pending.cancel()
