import re
import time
from typing import Iterable

from karaoke_server.models import QueueEntryWithSong, Song
from karaoke_server.schemas.events import (
    EventQueueEntry,
    EventSong,
    PlaybackControl,
    PlaybackControlPayload,
    QueueUpdated,
    QueueUpdatedPayload,
    SongChanged,
    SongChangedPayload,
)
from karaoke_server.schemas.playback import PlaybackAction

ISO8601_DURATION = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)


def format_iso8601_duration(duration: str | None) -> str:
    """
    Format a YouTube ISO-8601 duration for display.

    Args:
        duration: Duration such as "PT3M45S" or "PT1H2M3S"

    Returns:
        "3:45", "1:02:03", or "0:00" when missing or unparseable
    """
    if not duration:
        return "0:00"
    match = ISO8601_DURATION.match(duration)
    if not match:
        return "0:00"

    parts = {name: int(value) if value else 0 for name, value in match.groupdict().items()}
    hours = parts["days"] * 24 + parts["hours"]
    minutes = parts["minutes"]
    seconds = parts["seconds"]

    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def now_ms() -> int:
    return int(time.time() * 1000)


def format_event_song(song: Song) -> EventSong:
    """Format a stored song for a realtime payload."""
    return EventSong(
        id=str(song.id),
        title=song.title,
        artist=song.artist,
        external_video_id=song.external_video_id,
        duration_display=song.duration_display,
        thumbnail_url=song.thumbnail_url,
    )


def format_queue_updated(room_code: str, queue: Iterable[QueueEntryWithSong]) -> QueueUpdated:
    """
    Build a queue_updated event carrying the full ordered queue.

    Args:
        room_code: Public room code
        queue: Queue entries with songs, in any order

    Returns:
        Typed queue_updated event
    """
    entries = tuple(
        EventQueueEntry(
            entry_id=str(entry.id),
            position=entry.position,
            song=format_event_song(entry.song),
        )
        for entry in sorted(queue, key=lambda entry: entry.position)
    )
    return QueueUpdated(data=QueueUpdatedPayload(room_code=room_code, queue=entries))


def format_song_changed(room_code: str, song: Song | None) -> SongChanged:
    return SongChanged(
        data=SongChangedPayload(
            room_code=room_code,
            current_song_id=str(song.id) if song else None,
            song=format_event_song(song) if song else None,
        )
    )


def format_playback_control(
    room_code: str,
    action: PlaybackAction,
    volume: int | None = None,
    timestamp: int | None = None,
) -> PlaybackControl:
    return PlaybackControl(
        data=PlaybackControlPayload(
            room_code=room_code,
            action=action,
            timestamp=timestamp if timestamp is not None else now_ms(),
            volume=volume,
        )
    )
