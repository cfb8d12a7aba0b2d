import json

from collabcore.observability import EventEmitter, EventType, InMemoryEventSink, JsonlEventSink


class BrokenSink:
    def emit(self, event):
        raise OSError("disk full")


def test_broken_sink_does_not_stop_delivery():
    sink = InMemoryEventSink()
    emitter = EventEmitter([BrokenSink(), sink])

    event = emitter.emit(EventType.PHASE_START, "task-1", phase_id="draft")

    assert sink.events == [event]
    assert event.payload == {"phase_id": "draft"}
    assert sink.of_type(EventType.PHASE_END) == []


def test_jsonl_sink_appends_one_document_per_event(tmp_path):
    path = tmp_path / "audit" / "events.jsonl"
    emitter = EventEmitter()
    emitter.add_sink(JsonlEventSink(path))

    emitter.emit(EventType.TASK_STATUS, "task-1", status="pending", previous=None)
    emitter.emit(EventType.TASK_STATUS, "task-1", status="planning", previous="pending")

    lines = path.read_text(encoding="utf-8").splitlines()
    records = [json.loads(line) for line in lines]
    assert [r["payload"]["status"] for r in records] == ["pending", "planning"]
    assert records[0]["task_id"] == "task-1"
    assert records[0]["type"] == "task_status"
