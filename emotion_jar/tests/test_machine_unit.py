import asyncio
import random

import pytest

from emotion_jar.flow.machine import InvalidTransitionError, JarStateMachine
from emotion_jar.flow.scheduler import FlowTiming, InstantScheduler, Scheduler
from emotion_jar.internal_core.contracts import Note
from emotion_jar.internal_core.note_store import JsonNoteStore
from emotion_jar.transform.base import TransformBackend
from emotion_jar.transform.fallback import is_fallback_pair
from emotion_jar.transform.gateway import TransformationGateway


class StaticBackend(TransformBackend):
    async def rewrite(self, original_text: str) -> str:
        _ = original_text
        return '{"transformedText": "我允许自己休息。", "quote": "慢慢来，比较快。 —— 佚名"}'

    def name(self) -> str:
        return "static"


class FailingBackend(TransformBackend):
    async def rewrite(self, original_text: str) -> str:
        _ = original_text
        raise ConnectionError("upstream unreachable for test")

    def name(self) -> str:
        return "failing"


class StateProbeScheduler(Scheduler):
    """Records which phase was visible while each delay was pending."""

    def __init__(self) -> None:
        self.machine: JarStateMachine | None = None
        self.seen: list[tuple[str, float]] = []

    async def sleep(self, seconds: float) -> None:
        assert self.machine is not None
        self.seen.append((self.machine.state, seconds))
        await asyncio.sleep(0)

    def name(self) -> str:
        return "probe"


def _machine(backend=None, *, store=None, scheduler=None, transitions=None) -> JarStateMachine:
    scheduler = scheduler or InstantScheduler()
    store = store if store is not None else JsonNoteStore(None, rng=random.Random(5))
    gateway = TransformationGateway(backend, floor_sec=2.6, scheduler=scheduler, rng=random.Random(5))

    def record(source, target, action) -> None:
        if transitions is not None:
            transitions.append((source, target, action))

    return JarStateMachine(
        store=store,
        gateway=gateway,
        scheduler=scheduler,
        timing=FlowTiming(crumple_sec=1.5, throw_sec=1.0, floor_sec=2.6),
        rng=random.Random(5),
        on_transition=record,
    )


def _stored_note(note_id: str) -> Note:
    return Note(id=note_id, original_text="o", transformed_text=f"t-{note_id}", quote="q", created_at=1)


def test_submit_walks_every_processing_phase_in_order() -> None:
    transitions: list[tuple[str, str, str]] = []
    scheduler = InstantScheduler()
    machine = _machine(StaticBackend(), scheduler=scheduler, transitions=transitions)

    machine.begin_entry()
    machine.update_draft("今天很累")
    assert asyncio.run(machine.submit()) is True

    assert machine.state == "REVIEW_PROMPT"
    assert [target for _source, target, _action in transitions] == [
        "INPUT",
        "PROCESSING_CRUMPLE",
        "PROCESSING_THROW",
        "REVIEW_PROMPT",
    ]
    assert [action for _s, _t, action in transitions][1:] == ["submit", "crumple", "throw"]
    assert scheduler.requested == [1.5, 1.0]


def test_each_timed_delay_runs_while_its_phase_is_visible() -> None:
    scheduler = StateProbeScheduler()
    machine = _machine(StaticBackend(), scheduler=scheduler)
    scheduler.machine = machine

    machine.begin_entry()
    machine.update_draft("something heavy")
    asyncio.run(machine.submit())
    machine.accept_reveal()
    asyncio.run(machine.run_reveal())

    assert scheduler.seen == [
        ("PROCESSING_CRUMPLE", 1.5),
        ("PROCESSING_THROW", 1.0),
        ("TRANSFORMING", 2.6),
    ]
    assert machine.state == "RESULT"


@pytest.mark.parametrize("draft", ["", "   ", "\n\t  ", "　"])
def test_blank_draft_submit_is_a_no_op(draft: str) -> None:
    scheduler = InstantScheduler()
    machine = _machine(StaticBackend(), scheduler=scheduler)
    machine.begin_entry()
    machine.update_draft(draft)

    assert machine.submit_enabled is False
    assert asyncio.run(machine.submit()) is False
    assert machine.state == "INPUT"
    assert scheduler.requested == []


def test_upstream_failure_still_reaches_result_with_fallback_pair() -> None:
    machine = _machine(FailingBackend())
    machine.begin_entry()
    machine.update_draft("今天很累")
    asyncio.run(machine.submit())

    note = asyncio.run(machine.reveal())

    assert machine.state == "RESULT"
    assert machine.current_note == note
    assert note.original_text == "今天很累"
    assert is_fallback_pair(note.transformed_text, note.quote)
    assert note.id
    assert note.created_at > 0


def test_save_appends_once_and_resets_to_home() -> None:
    store = JsonNoteStore(None)
    machine = _machine(StaticBackend(), store=store)
    machine.begin_entry()
    machine.update_draft("tired")
    asyncio.run(machine.submit())
    note = asyncio.run(machine.reveal())

    assert machine.current_note_saved is False
    assert machine.save_and_close() is True
    assert machine.state == "HOME"
    assert machine.draft == ""
    assert machine.current_note is None
    assert [item.id for item in store.notes()] == [note.id]

    # Re-open the same note from the gallery and save again: still one entry.
    assert machine.open_gallery() is True
    machine.select_note(note.id)
    assert machine.current_note_saved is True
    assert machine.save_and_close() is False
    assert [item.id for item in store.notes()] == [note.id]


def test_empty_store_refuses_gallery_and_random_until_first_save() -> None:
    transitions: list[tuple[str, str, str]] = []
    machine = _machine(StaticBackend(), transitions=transitions)

    assert machine.gallery_enabled is False
    assert machine.random_enabled is False
    assert machine.open_gallery() is False
    assert asyncio.run(machine.open_random()) is None
    assert machine.state == "HOME"
    assert transitions == []

    machine.begin_entry()
    machine.update_draft("first note")
    asyncio.run(machine.submit())
    asyncio.run(machine.reveal())
    machine.save_and_close()

    assert machine.gallery_enabled is True
    assert machine.random_enabled is True
    assert machine.open_gallery() is True
    assert machine.state == "GALLERY"


def test_random_picks_an_existing_note_after_the_floor_without_gateway() -> None:
    store = JsonNoteStore(None)
    for idx in range(4):
        store.append(_stored_note(f"n{idx}"))
    scheduler = InstantScheduler()
    backend = FailingBackend()
    machine = _machine(backend, store=store, scheduler=scheduler)

    existing = {item.id for item in store.notes()}
    for _ in range(10):
        note = asyncio.run(machine.open_random())
        assert note is not None
        assert note.id in existing
        assert machine.state == "RESULT"
        assert machine.current_note_saved is True
        assert machine.save_and_close() is False
    assert scheduler.requested == [2.6] * 10
    assert len(store) == 4


def test_random_from_gallery_goes_through_transforming() -> None:
    store = JsonNoteStore(None)
    store.append(_stored_note("only"))
    transitions: list[tuple[str, str, str]] = []
    machine = _machine(StaticBackend(), store=store, transitions=transitions)

    machine.open_gallery()
    note = asyncio.run(machine.open_random())

    assert note is not None and note.id == "only"
    assert [target for _s, target, _a in transitions] == ["GALLERY", "TRANSFORMING", "RESULT"]


def test_random_returns_home_when_jar_emptied_during_delay() -> None:
    store = JsonNoteStore(None)
    store.append(_stored_note("gone"))

    class EmptyingScheduler(InstantScheduler):
        async def sleep(self, seconds: float) -> None:
            store.remove("gone")
            await super().sleep(seconds)

    machine = _machine(StaticBackend(), store=store, scheduler=EmptyingScheduler())
    assert asyncio.run(machine.open_random()) is None
    assert machine.state == "HOME"


def test_select_note_reuses_stored_note_unchanged() -> None:
    store = JsonNoteStore(None)
    stored = _stored_note("keep")
    store.append(stored)
    machine = _machine(FailingBackend(), store=store)

    machine.open_gallery()
    selected = machine.select_note("keep")
    assert selected is stored
    assert machine.state == "RESULT"


def test_select_unknown_note_raises_lookup_error() -> None:
    store = JsonNoteStore(None)
    store.append(_stored_note("a"))
    machine = _machine(StaticBackend(), store=store)
    machine.open_gallery()
    with pytest.raises(LookupError):
        machine.select_note("missing")
    assert machine.state == "GALLERY"


def test_cancel_returns_home_and_keeps_draft() -> None:
    machine = _machine(StaticBackend())
    machine.begin_entry()
    machine.update_draft("half written")
    machine.cancel_entry()
    assert machine.state == "HOME"
    machine.begin_entry()
    assert machine.draft == "half written"


def test_close_gallery_returns_home() -> None:
    store = JsonNoteStore(None)
    store.append(_stored_note("a"))
    machine = _machine(StaticBackend(), store=store)
    machine.open_gallery()
    machine.close_gallery()
    assert machine.state == "HOME"


@pytest.mark.parametrize(
    "action",
    [
        lambda m: m.accept_reveal(),
        lambda m: m.save_and_close(),
        lambda m: m.update_draft("x"),
        lambda m: m.cancel_entry(),
        lambda m: m.accept_submit(),
        lambda m: m.close_gallery(),
        lambda m: m.select_note("x"),
    ],
)
def test_actions_outside_their_state_raise(action) -> None:
    machine = _machine(StaticBackend())
    with pytest.raises(InvalidTransitionError) as exc_info:
        action(machine)
    assert exc_info.value.state == "HOME"
    assert machine.state == "HOME"


def test_no_user_action_is_accepted_while_transforming() -> None:
    machine = _machine(StaticBackend())
    machine.begin_entry()
    machine.update_draft("x")
    asyncio.run(machine.submit())
    machine.accept_reveal()
    assert machine.state == "TRANSFORMING"

    for action in (machine.save_and_close, machine.begin_entry, machine.open_gallery, machine.accept_random):
        with pytest.raises(InvalidTransitionError):
            action()
    assert machine.state == "TRANSFORMING"
