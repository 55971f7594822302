"""
API v1 routes for the karaoke server.
"""
from karaoke_server.api.v1 import room, queue, song, playback, websocket

__all__ = ["room", "queue", "song", "playback", "websocket"]
