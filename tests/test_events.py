"""Event broadcaster tests."""

from uuid import uuid4

from imagestudio.models.image_generation import GenerationStatus
from imagestudio.services.image_studio.events import (
    EventBroadcaster,
    GenerationEvent,
    GenerationEventType,
)


def make_event() -> GenerationEvent:
    return GenerationEvent(
        type=GenerationEventType.STATUS,
        generation_id=uuid4(),
        status=GenerationStatus.IN_PROGRESS,
    )


def test_emit_reaches_every_sink():
    first, second = [], []
    broadcaster = EventBroadcaster([first.append, second.append])
    event = make_event()

    broadcaster.emit(event)

    assert first == [event]
    assert second == [event]


def test_failing_sink_does_not_stop_delivery():
    received = []

    def broken(event):
        raise RuntimeError("observer crashed")

    broadcaster = EventBroadcaster([broken, received.append])

    broadcaster.emit(make_event())

    assert len(received) == 1


def test_unsubscribe_stops_delivery():
    received = []
    broadcaster = EventBroadcaster()
    unsubscribe = broadcaster.subscribe(received.append)

    broadcaster.emit(make_event())
    unsubscribe()
    unsubscribe()
    broadcaster.emit(make_event())

    assert len(received) == 1
