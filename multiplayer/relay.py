"""
Socket.IO relay for squadron peers.

The relay has no authority over game state: it only forwards each message on
the squadron channel to every other connected client.  Ordering and
delivery guarantees are those of socket.io.
"""

import argparse
import logging
from typing import Any, Dict, Optional

import socketio

from config.settings import load_settings

from .socket_transport import DEFAULT_CHANNEL

logger = logging.getLogger(__name__)


def create_relay(channel: str = DEFAULT_CHANNEL, cors_allowed_origins: Any = "*") -> socketio.AsyncServer:
    """Build an ``AsyncServer`` that rebroadcasts ``channel`` messages"""
    sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=cors_allowed_origins)

    @sio.event
    async def connect(sid, environ, auth: Optional[Dict[str, Any]] = None):
        session_id = (auth or {}).get("session_id")
        if not session_id:
            logger.warning(f"Connection {sid} rejected: no session id")
            return False
        await sio.save_session(sid, {"session_id": session_id})
        logger.info(f"Session {session_id} connected with sid {sid}")

    @sio.event
    async def disconnect(sid):
        session = await sio.get_session(sid)
        logger.info(f"Session {session.get('session_id')} disconnected")

    async def relay(sid, message):
        await sio.emit(channel, message, skip_sid=sid)

    sio.on(channel, relay)
    return sio


def create_app(channel: str = DEFAULT_CHANNEL) -> socketio.ASGIApp:
    return socketio.ASGIApp(create_relay(channel))


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the squadron socket.io relay.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--config", default="settings.yaml", help="YAML file holding the squadron section")
    parser.add_argument("--channel", default=None, help="overrides the configured channel")
    parser.add_argument("--log-level", default="info")
    args = parser.parse_args()
    channel = args.channel or load_settings(args.config).channel

    import uvicorn

    logging.basicConfig(level=args.log_level.upper())
    uvicorn.run(create_app(channel), host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
