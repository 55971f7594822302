"""
Unit Tests for the Queue Engine

Tests for:
- insert (end / next), remove, advance, retreat
- reorder_step and bulk_reorder validation
- write plans and the temporary-position phase
- density and now-playing invariants over random operation sequences
"""

import random
from uuid import uuid4

import pytest

from karaoke_server.core.exceptions import (
    InvalidArgumentError,
    InvalidOperationError,
    NotFoundError,
)
from karaoke_server.services import queue_engine
from karaoke_server.services.queue_engine import (
    TEMP_POSITION_FLOOR,
    AdvanceMode,
    EntrySnapshot,
    InsertMode,
    PositionAssignment,
    QueueEventKind,
    QueueSnapshot,
    ReorderDirection,
    temporary_positions,
)

SONG_AND_QUEUE = (QueueEventKind.SONG_CHANGED, QueueEventKind.QUEUE_UPDATED)
QUEUE_ONLY = (QueueEventKind.QUEUE_UPDATED,)


def make_snapshot(*song_ids, current=True, version=0):
    entries = tuple(EntrySnapshot(uuid4(), position, song_id) for position, song_id in enumerate(song_ids))
    current_song_id = song_ids[0] if current and song_ids else None
    return QueueSnapshot(current_song_id=current_song_id, entries=entries, version=version)


def songs_of(snapshot):
    return list(snapshot.song_ids)


def assert_invariants(snapshot):
    assert [e.position for e in snapshot.entries] == list(range(len(snapshot.entries)))
    if snapshot.current_song_id is not None:
        assert snapshot.entries[0].song_id == snapshot.current_song_id


def apply_plan(rows, plan):
    """Apply a write plan row by row, enforcing unique positions at every step."""
    rows = dict(rows)

    def place(entry_id, position):
        for other_id, other_position in rows.items():
            assert not (other_id != entry_id and other_position == position), (
                f"position {position} collides"
            )
        rows[entry_id] = position

    for entry_id in plan.deletions:
        del rows[entry_id]
    for assignment in plan.temporary:
        place(assignment.entry_id, assignment.position)
    for assignment in plan.final:
        place(assignment.entry_id, assignment.position)
    for entry in plan.inserts:
        rows[entry.id] = None
        place(entry.id, entry.position)
    return rows


@pytest.fixture
def abc():
    a, b, c = uuid4(), uuid4(), uuid4()
    return a, b, c


# =============================================================================
# Insert
# =============================================================================


class TestInsert:
    """Tests for queue insertion."""

    def test_end_on_empty_queue_starts_playing(self):
        """Should place the song at 0, make it current and emit both events."""
        x = uuid4()
        transition = queue_engine.insert(QueueSnapshot(), x, InsertMode.END)

        assert songs_of(transition.after) == [x]
        assert transition.after.current_song_id == x
        assert transition.events == SONG_AND_QUEUE
        assert transition.inserted.position == 0

    def test_end_appends_after_last(self, abc):
        """Should append without touching the current song."""
        a, b, c = abc
        d = uuid4()
        transition = queue_engine.insert(make_snapshot(a, b, c), d, "end")

        assert songs_of(transition.after) == [a, b, c, d]
        assert transition.after.current_song_id == a
        assert transition.events == QUEUE_ONLY
        assert transition.moved == ()

    def test_next_goes_right_after_current(self, abc):
        """Should yield [A, D, B, C] with A still current."""
        a, b, c = abc
        d = uuid4()
        transition = queue_engine.insert(make_snapshot(a, b, c), d, InsertMode.NEXT)

        assert songs_of(transition.after) == [a, d, b, c]
        assert transition.after.current_song_id == a
        assert transition.inserted.position == 1
        assert transition.events == QUEUE_ONLY
        assert_invariants(transition.after)

    def test_next_without_current_takes_head(self, abc):
        """Should put the song at 0, shift everything and start playing it."""
        a, b, _ = abc
        d = uuid4()
        transition = queue_engine.insert(make_snapshot(a, b, current=False), d, InsertMode.NEXT)

        assert songs_of(transition.after) == [d, a, b]
        assert transition.after.current_song_id == d
        assert transition.events == SONG_AND_QUEUE

    def test_stale_current_pointer_is_healed(self, abc):
        """Should treat a pointer that does not match the head as nothing playing."""
        a, b, c = abc
        snapshot = QueueSnapshot(
            current_song_id=c,
            entries=(EntrySnapshot(uuid4(), 0, a), EntrySnapshot(uuid4(), 1, b)),
        )
        d = uuid4()
        transition = queue_engine.insert(snapshot, d, InsertMode.NEXT)

        assert songs_of(transition.after) == [d, a, b]
        assert transition.after.current_song_id == d
        assert_invariants(transition.after)

    def test_invalid_mode_rejected(self):
        """Should raise InvalidArgumentError for unknown insert modes."""
        with pytest.raises(InvalidArgumentError, match="addPosition"):
            queue_engine.insert(QueueSnapshot(), uuid4(), "middle")

    def test_next_shift_uses_temporary_positions(self, abc):
        """Should park shifted entries on negative positions before the final move."""
        a, b, c = abc
        snapshot = make_snapshot(a, b, c)
        transition = queue_engine.insert(snapshot, uuid4(), InsertMode.NEXT)
        plan = transition.write_plan(temp_base=TEMP_POSITION_FLOOR)

        assert [t.position for t in plan.temporary] == [-1000, -1001]
        assert [f.position for f in plan.final] == [2, 3]
        assert plan.inserts[0].position == 1
        assert plan.expected_version == snapshot.version

        rows = apply_plan({e.id: e.position for e in snapshot.entries}, plan)
        assert sorted(rows.values()) == [0, 1, 2, 3]


# =============================================================================
# Remove
# =============================================================================


class TestRemove:
    """Tests for removing entries."""

    def test_remove_current_promotes_next(self, abc):
        """Should make the new head current and emit song_changed."""
        a, b, c = abc
        snapshot = make_snapshot(a, b, c)
        transition = queue_engine.remove(snapshot, snapshot.entries[0].id)

        assert songs_of(transition.after) == [b, c]
        assert transition.after.current_song_id == b
        assert transition.events == SONG_AND_QUEUE
        assert transition.retired_song_id is None

    def test_remove_only_current_clears_pointer(self):
        """Should leave an empty queue with no current song."""
        a = uuid4()
        snapshot = make_snapshot(a)
        transition = queue_engine.remove(snapshot, snapshot.entries[0].id)

        assert transition.after.entries == ()
        assert transition.after.current_song_id is None
        assert transition.events == SONG_AND_QUEUE

    def test_remove_middle_compacts(self, abc):
        """Should renumber the tail without changing the current song."""
        a, b, c = abc
        snapshot = make_snapshot(a, b, c)
        transition = queue_engine.remove(snapshot, snapshot.entries[1].id)

        assert songs_of(transition.after) == [a, c]
        assert transition.after.current_song_id == a
        assert transition.events == QUEUE_ONLY
        assert_invariants(transition.after)

        plan = transition.write_plan()
        assert plan.deletions == (snapshot.entries[1].id,)
        assert plan.temporary == ()
        assert plan.final == (PositionAssignment(snapshot.entries[2].id, 1),)

    def test_remove_unknown_entry(self, abc):
        """Should raise NotFoundError for entries outside the room."""
        with pytest.raises(NotFoundError):
            queue_engine.remove(make_snapshot(*abc), uuid4())

    def test_remove_malformed_id(self, abc):
        """Should raise InvalidArgumentError for ids that are not UUIDs."""
        with pytest.raises(InvalidArgumentError):
            queue_engine.remove(make_snapshot(*abc), "not-a-uuid")


# =============================================================================
# Advance
# =============================================================================


class TestAdvance:
    """Tests for advancing to the next song."""

    def test_advance_retires_current(self, abc):
        """Should yield [B, C] with B current and A retired."""
        a, b, c = abc
        snapshot = make_snapshot(a, b, c)
        transition = queue_engine.advance(snapshot, AdvanceMode.MANUAL)

        assert songs_of(transition.after) == [b, c]
        assert transition.after.current_song_id == b
        assert transition.retired_song_id == a
        assert transition.deleted == (snapshot.entries[0],)
        assert transition.events == SONG_AND_QUEUE
        assert transition.advance_mode is AdvanceMode.MANUAL

    def test_advance_single_item_empties_queue(self):
        """Should clear the current song and still emit song_changed."""
        a = uuid4()
        transition = queue_engine.advance(make_snapshot(a), "auto")

        assert transition.after.entries == ()
        assert transition.after.current_song_id is None
        assert transition.retired_song_id == a
        assert transition.events == SONG_AND_QUEUE

    def test_advance_empty_queue_confirms(self):
        """Should emit both events without writing anything."""
        transition = queue_engine.advance(QueueSnapshot())

        assert transition.events == SONG_AND_QUEUE
        assert transition.requires_write is False
        assert transition.retired_song_id is None

    def test_advance_without_current_promotes_head(self, abc):
        """Should start the head playing without removing it."""
        a, b, _ = abc
        transition = queue_engine.advance(make_snapshot(a, b, current=False))

        assert songs_of(transition.after) == [a, b]
        assert transition.after.current_song_id == a
        assert transition.deleted == ()
        assert transition.retired_song_id is None
        assert transition.requires_write is True

    def test_auto_and_manual_transform_identically(self, abc):
        """Should produce the same queue for both modes."""
        snapshot = make_snapshot(*abc)
        manual = queue_engine.advance(snapshot, AdvanceMode.MANUAL)
        auto = queue_engine.advance(snapshot, AdvanceMode.AUTO)

        assert manual.after == auto.after
        assert auto.advance_mode is AdvanceMode.AUTO


# =============================================================================
# Retreat
# =============================================================================


class TestRetreat:
    """Tests for going back to the previous song."""

    def test_retreat_brings_back_last_played(self, abc):
        """Should insert the last played song at 0 and push the current song to 1."""
        a, b, x = abc
        transition = queue_engine.retreat(make_snapshot(a, b), [x])

        assert songs_of(transition.after) == [x, a, b]
        assert transition.after.current_song_id == x
        assert transition.inserted.song_id == x
        assert transition.events == SONG_AND_QUEUE
        assert_invariants(transition.after)

    def test_retreat_skips_songs_already_queued(self, abc):
        """Should pick the newest history song that is not in the queue."""
        a, b, y = abc
        transition = queue_engine.retreat(make_snapshot(a, b), [b, y])

        assert transition.after.current_song_id == y

    def test_retreat_without_candidate_is_noop(self, abc):
        """Should leave the queue alone and emit nothing."""
        a, b, _ = abc
        snapshot = make_snapshot(a, b)
        transition = queue_engine.retreat(snapshot, [a])

        assert transition.after == snapshot
        assert transition.events == ()
        assert transition.requires_write is False

    def test_retreat_on_empty_queue(self):
        """Should start playing the last song from history."""
        x = uuid4()
        transition = queue_engine.retreat(QueueSnapshot(), [x])

        assert songs_of(transition.after) == [x]
        assert transition.after.current_song_id == x


# =============================================================================
# Reorder step
# =============================================================================


class TestReorderStep:
    """Tests for single-step reordering."""

    def test_move_down_swaps_neighbours(self, abc):
        """Should swap B and C."""
        a, b, c = abc
        snapshot = make_snapshot(a, b, c)
        transition = queue_engine.reorder_step(snapshot, snapshot.entries[1].id, ReorderDirection.DOWN)

        assert songs_of(transition.after) == [a, c, b]
        assert transition.events == QUEUE_ONLY

        plan = transition.write_plan()
        assert len(plan.temporary) == 2
        assert all(t.position <= -TEMP_POSITION_FLOOR for t in plan.temporary)
        rows = apply_plan({e.id: e.position for e in snapshot.entries}, plan)
        assert rows[snapshot.entries[1].id] == 2

    def test_current_song_cannot_move(self, abc):
        """Should reject moving the now-playing entry."""
        snapshot = make_snapshot(*abc)
        with pytest.raises(InvalidOperationError, match="currently playing"):
            queue_engine.reorder_step(snapshot, snapshot.entries[0].id, "down")

    def test_cannot_move_above_current(self, abc):
        """Should reject moving position 1 up while a song plays."""
        snapshot = make_snapshot(*abc)
        with pytest.raises(InvalidOperationError, match="above the currently playing"):
            queue_engine.reorder_step(snapshot, snapshot.entries[1].id, "up")

    def test_last_cannot_move_down(self, abc):
        """Should reject moving the last entry further down."""
        snapshot = make_snapshot(*abc)
        with pytest.raises(InvalidOperationError, match="further down"):
            queue_engine.reorder_step(snapshot, snapshot.entries[2].id, "down")

    def test_head_cannot_move_up_when_idle(self, abc):
        """Should reject moving position 0 up even when nothing plays."""
        snapshot = make_snapshot(*abc, current=False)
        with pytest.raises(InvalidOperationError, match="further up"):
            queue_engine.reorder_step(snapshot, snapshot.entries[0].id, "up")

    def test_position_one_moves_up_when_idle(self, abc):
        """Should allow moving into position 0 when nothing plays."""
        a, b, c = abc
        snapshot = make_snapshot(a, b, c, current=False)
        transition = queue_engine.reorder_step(snapshot, snapshot.entries[1].id, "up")

        assert songs_of(transition.after) == [b, a, c]
        assert transition.after.current_song_id is None

    def test_invalid_direction(self, abc):
        """Should raise InvalidArgumentError for unknown directions."""
        snapshot = make_snapshot(*abc)
        with pytest.raises(InvalidArgumentError):
            queue_engine.reorder_step(snapshot, snapshot.entries[1].id, "sideways")

    def test_rejection_leaves_snapshot_untouched(self, abc):
        """Should not alter the input snapshot when rejecting."""
        snapshot = make_snapshot(*abc)
        before = snapshot.entries
        with pytest.raises(InvalidOperationError):
            queue_engine.reorder_step(snapshot, snapshot.entries[1].id, "up")
        assert snapshot.entries == before


# =============================================================================
# Bulk reorder
# =============================================================================


class TestBulkReorder:
    """Tests for batch reordering."""

    def test_reverses_tail(self):
        """Should apply a full permutation of the non-current entries."""
        songs = [uuid4() for _ in range(5)]
        snapshot = make_snapshot(*songs)
        ids = [e.id for e in snapshot.entries]
        assignments = [{"id": ids[i], "position": 5 - i} for i in range(1, 5)]

        transition = queue_engine.bulk_reorder(snapshot, assignments)

        assert songs_of(transition.after) == [songs[0], songs[4], songs[3], songs[2], songs[1]]
        assert transition.after.current_song_id == songs[0]
        rows = apply_plan({e.id: e.position for e in snapshot.entries}, transition.write_plan())
        assert sorted(rows.values()) == [0, 1, 2, 3, 4]

    def test_moving_current_rejected(self, abc):
        """Should reject assignments that move the current song off 0."""
        snapshot = make_snapshot(*abc)
        ids = [e.id for e in snapshot.entries]
        with pytest.raises(InvalidOperationError, match="currently playing"):
            queue_engine.bulk_reorder(
                snapshot, [PositionAssignment(ids[0], 1), PositionAssignment(ids[1], 0)]
            )

    def test_unknown_entry(self, abc):
        """Should raise NotFoundError for foreign ids."""
        snapshot = make_snapshot(*abc)
        with pytest.raises(NotFoundError, match="not found in room"):
            queue_engine.bulk_reorder(snapshot, [{"id": uuid4(), "position": 1}])

    def test_duplicate_entry(self, abc):
        """Should raise InvalidArgumentError when an id repeats."""
        snapshot = make_snapshot(*abc)
        entry_id = snapshot.entries[1].id
        with pytest.raises(InvalidArgumentError, match="more than once"):
            queue_engine.bulk_reorder(
                snapshot, [{"id": entry_id, "position": 1}, {"id": entry_id, "position": 2}]
            )

    def test_negative_position(self, abc):
        """Should raise InvalidArgumentError for negative positions."""
        snapshot = make_snapshot(*abc)
        with pytest.raises(InvalidArgumentError, match="negative"):
            queue_engine.bulk_reorder(snapshot, [{"id": snapshot.entries[1].id, "position": -1}])

    def test_missing_position(self, abc):
        """Should raise InvalidArgumentError when position is absent or not an int."""
        snapshot = make_snapshot(*abc)
        with pytest.raises(InvalidArgumentError):
            queue_engine.bulk_reorder(snapshot, [{"id": snapshot.entries[1].id}])
        with pytest.raises(InvalidArgumentError):
            queue_engine.bulk_reorder(snapshot, [{"id": snapshot.entries[1].id, "position": "2"}])

    def test_gap_rejected(self, abc):
        """Should reject results that are not dense."""
        snapshot = make_snapshot(*abc)
        with pytest.raises(InvalidOperationError, match="gaps"):
            queue_engine.bulk_reorder(snapshot, [{"id": snapshot.entries[2].id, "position": 7}])

    def test_empty_rejected(self, abc):
        """Should require at least one assignment."""
        with pytest.raises(InvalidArgumentError):
            queue_engine.bulk_reorder(make_snapshot(*abc), [])

    def test_identity_needs_no_write(self, abc):
        """Should confirm an unchanged order without writes."""
        snapshot = make_snapshot(*abc)
        assignments = [{"id": e.id, "position": e.position} for e in snapshot.entries]
        transition = queue_engine.bulk_reorder(snapshot, assignments)

        assert transition.after == snapshot
        assert transition.requires_write is False
        assert transition.events == QUEUE_ONLY


# =============================================================================
# Temporary positions
# =============================================================================


class TestTemporaryPositions:
    """Tests for the temporary-position phase."""

    def test_positions_are_distinct_and_out_of_band(self):
        """Should never overlap real positions or each other."""
        assignments = [PositionAssignment(uuid4(), i) for i in range(50)]
        temporary = temporary_positions(assignments)

        values = [t.position for t in temporary]
        assert len(set(values)) == 50
        assert max(values) <= -TEMP_POSITION_FLOOR

    def test_low_base_rejected(self):
        """Should refuse a base that could reach real positions."""
        with pytest.raises(ValueError):
            temporary_positions([PositionAssignment(uuid4(), 0)], base=5)


# =============================================================================
# Invariants
# =============================================================================


class TestInvariants:
    """Random operation sequences keep the queue dense and the head playing."""

    @pytest.mark.parametrize("seed", range(10))
    def test_random_sequences(self, seed):
        """Should hold both invariants and produce collision-free write plans."""
        rng = random.Random(seed)
        snapshot = QueueSnapshot()
        history = []

        for _ in range(60):
            op = rng.choice(["insert", "insert", "remove", "advance", "retreat", "reorder", "bulk"])
            try:
                if op == "insert":
                    transition = queue_engine.insert(snapshot, uuid4(), rng.choice(list(InsertMode)))
                elif op == "remove" and snapshot.entries:
                    transition = queue_engine.remove(snapshot, rng.choice(snapshot.entries).id)
                elif op == "advance":
                    transition = queue_engine.advance(snapshot, rng.choice(list(AdvanceMode)))
                elif op == "retreat":
                    transition = queue_engine.retreat(snapshot, list(reversed(history)))
                elif op == "reorder" and snapshot.entries:
                    transition = queue_engine.reorder_step(
                        snapshot, rng.choice(snapshot.entries).id, rng.choice(list(ReorderDirection))
                    )
                elif op == "bulk" and len(snapshot.entries) > 1:
                    start = 1 if snapshot.current_entry else 0
                    movable = list(snapshot.entries[start:])
                    targets = list(range(start, len(snapshot.entries)))
                    rng.shuffle(targets)
                    transition = queue_engine.bulk_reorder(
                        snapshot, [{"id": e.id, "position": p} for e, p in zip(movable, targets)]
                    )
                else:
                    continue
            except InvalidOperationError:
                continue

            rows = apply_plan({e.id: e.position for e in snapshot.entries}, transition.write_plan())
            assert sorted(rows.values()) == list(range(len(transition.after.entries)))

            if transition.retired_song_id:
                history.append(transition.retired_song_id)
            snapshot = QueueSnapshot(
                transition.after.current_song_id,
                transition.after.entries,
                snapshot.version + 1,
            )
            assert_invariants(snapshot)
