"""Tests for the optimistic link coordinator."""
import anyio
import pytest

from notegraph.config import config
from notegraph.exceptions import (
    ConflictError,
    EdgeNotFoundError,
    NoteNotFoundError,
    TransportError,
    ValidationError,
)
from notegraph.models.schema import EdgeSpec, MutationState, is_temporary_id
from notegraph.services.coordinator import OptimisticLinkCoordinator
from tests.conftest import OWNER
from tests.fakes import FakeLinkStore, RecordingNotifier

SOURCE = "note-src"


def _spec(target, source=SOURCE):
    return EdgeSpec(
        source_note_id=source,
        target_note_id=target,
        anchor_text=target,
        canonical_title=target.title(),
        canonical_slug=target,
    )


@pytest.fixture
def store():
    return FakeLinkStore()


@pytest.fixture
def recorder():
    return RecordingNotifier()


@pytest.fixture
def coordinator(store, recorder):
    return OptimisticLinkCoordinator(
        store, OWNER, source_note_id=SOURCE, notifier=recorder, undo_capacity=3
    )


class TestCreateLink:
    @pytest.mark.anyio
    async def test_placeholder_is_replaced_by_durable_edge(self, coordinator, store):
        edge = await coordinator.create_link(_spec("alpha"))
        assert coordinator.edges == [edge]
        assert not is_temporary_id(edge.id)
        assert edge.id in store.edges
        assert coordinator.pending_count == 0

    @pytest.mark.anyio
    async def test_placeholder_visible_while_in_flight(self, coordinator, store):
        release = store.gate("alpha")

        async with anyio.create_task_group() as tg:
            tg.start_soon(coordinator.create_link, _spec("alpha"))
            await store.entered["alpha"].wait()
            [pending] = coordinator.edges
            assert pending.is_optimistic
            assert is_temporary_id(pending.id)
            assert coordinator.mutations[pending.id].state == MutationState.PENDING
            release.set()

        [committed] = coordinator.edges
        assert not committed.is_optimistic
        assert pending.id not in coordinator.mutations
        assert coordinator.history[-1].key == pending.id
        assert coordinator.history[-1].state == MutationState.COMMITTED

    @pytest.mark.anyio
    async def test_failure_restores_previous_view(self, coordinator, store, recorder):
        await coordinator.create_link(_spec("alpha"))
        before = coordinator.edges
        store.fail("beta", NoteNotFoundError("beta"))

        with pytest.raises(NoteNotFoundError):
            await coordinator.create_link(_spec("beta"))

        assert coordinator.edges == before
        assert recorder.messages("error") == ["Failed to create link: Note with ID 'beta' not found"]

    @pytest.mark.anyio
    async def test_self_loop_rejected_before_local_change(self, coordinator, store):
        with pytest.raises(ValidationError):
            await coordinator.create_link(_spec(SOURCE))
        assert coordinator.edges == []
        assert coordinator.mutations == {}
        assert store.calls == []

    @pytest.mark.anyio
    async def test_foreign_source_rejected(self, coordinator):
        with pytest.raises(ValidationError):
            await coordinator.create_link(_spec("alpha", source="someone-else"))
        assert coordinator.edges == []

    @pytest.mark.anyio
    async def test_out_of_order_commits_reconcile_by_identity(self, coordinator, store):
        release_a = store.gate("alpha")
        release_b = store.gate("beta")
        done_b = anyio.Event()
        results = {}

        async def create(target, done=None):
            results[target] = await coordinator.create_link(_spec(target))
            if done is not None:
                done.set()

        async with anyio.create_task_group() as tg:
            tg.start_soon(create, "alpha")
            await store.entered["alpha"].wait()
            tg.start_soon(create, "beta", done_b)
            await store.entered["beta"].wait()

            release_b.set()
            await done_b.wait()
            first, second = coordinator.edges
            assert first.is_optimistic
            assert second.id == results["beta"].id
            release_a.set()

        assert [e.id for e in coordinator.edges] == [results["alpha"].id, results["beta"].id]
        assert not any(e.is_optimistic for e in coordinator.edges)

    @pytest.mark.anyio
    async def test_cancelled_create_removes_placeholder(self, coordinator, store):
        store.gate("alpha")
        async with anyio.create_task_group() as tg:
            tg.start_soon(coordinator.create_link, _spec("alpha"))
            await store.entered["alpha"].wait()
            assert coordinator.pending_count == 1
            tg.cancel_scope.cancel()

        assert coordinator.edges == []
        assert coordinator.pending_count == 0
        assert coordinator.history[-1].state == MutationState.ROLLED_BACK


class TestDeleteLink:
    @pytest.mark.anyio
    async def test_delete_then_undo_recreates_with_new_id(self, coordinator, store, recorder):
        edge = await coordinator.create_link(_spec("alpha"))
        entry = await coordinator.delete_link(edge.id)

        assert coordinator.edges == []
        assert edge.id not in store.edges
        assert recorder.notifications[-1].undo_token == entry.token
        assert recorder.notifications[-1].action_label == "Undo"

        restored = await coordinator.undo(entry.token)
        assert restored.id != edge.id
        assert restored.target_note_id == edge.target_note_id
        assert restored.anchor_text == edge.anchor_text
        assert coordinator.undo_stack == []

    @pytest.mark.anyio
    async def test_failed_delete_reinserts_at_original_position(self, coordinator, store, recorder):
        a = await coordinator.create_link(_spec("alpha"))
        b = await coordinator.create_link(_spec("beta"))
        c = await coordinator.create_link(_spec("gamma"))
        store.fail(b.id, TransportError("store unreachable", operation="delete_edge"))

        with pytest.raises(TransportError):
            await coordinator.delete_link(b.id)

        assert [e.id for e in coordinator.edges] == [a.id, b.id, c.id]
        assert coordinator.undo_stack == []
        assert recorder.notifications[-1].level == "error"

    @pytest.mark.anyio
    async def test_second_delete_of_same_edge_is_not_found(self, coordinator):
        edge = await coordinator.create_link(_spec("alpha"))
        await coordinator.delete_link(edge.id)
        with pytest.raises(EdgeNotFoundError):
            await coordinator.delete_link(edge.id)

    @pytest.mark.anyio
    async def test_edge_already_gone_in_store_is_a_conflict(self, coordinator, store):
        edge = await coordinator.create_link(_spec("alpha"))
        del store.edges[edge.id]

        with pytest.raises(ConflictError):
            await coordinator.delete_link(edge.id)

        assert coordinator.edges == []
        assert coordinator.undo_stack == []

    @pytest.mark.anyio
    async def test_pending_edge_cannot_be_deleted(self, coordinator, store):
        release = store.gate("alpha")
        async with anyio.create_task_group() as tg:
            tg.start_soon(coordinator.create_link, _spec("alpha"))
            await store.entered["alpha"].wait()
            [pending] = coordinator.edges
            with pytest.raises(ConflictError):
                await coordinator.delete_link(pending.id)
            release.set()

    @pytest.mark.anyio
    async def test_undo_stack_is_bounded(self, coordinator):
        edges = [await coordinator.create_link(_spec(t)) for t in ("a1", "a2", "a3", "a4")]
        for edge in edges:
            await coordinator.delete_link(edge.id)
        stack = coordinator.undo_stack
        assert len(stack) == 3
        assert [entry.edge.id for entry in stack] == [e.id for e in edges[1:]]

    @pytest.mark.anyio
    async def test_undo_entry_is_an_independent_copy(self, coordinator):
        edge = await coordinator.create_link(_spec("alpha"))
        entry = await coordinator.delete_link(edge.id)
        assert entry.edge == edge
        assert entry.edge is not edge

    @pytest.mark.anyio
    async def test_undo_without_entries(self, coordinator):
        with pytest.raises(ValidationError):
            await coordinator.undo()

    @pytest.mark.anyio
    async def test_failed_undo_keeps_entry(self, coordinator, store):
        edge = await coordinator.create_link(_spec("alpha"))
        entry = await coordinator.delete_link(edge.id)
        store.fail("alpha", TransportError("down"))
        with pytest.raises(TransportError):
            await coordinator.undo()
        assert [e.token for e in coordinator.undo_stack] == [entry.token]

    @pytest.mark.anyio
    async def test_cancelled_delete_restores_edge(self, coordinator, store):
        edge = await coordinator.create_link(_spec("alpha"))
        store.gate(edge.id)
        async with anyio.create_task_group() as tg:
            tg.start_soon(coordinator.delete_link, edge.id)
            await store.entered[edge.id].wait()
            assert coordinator.edges == []
            tg.cancel_scope.cancel()

        assert coordinator.edges == [edge]
        assert coordinator.undo_stack == []
        assert coordinator.pending_count == 0


class TestBatchCreate:
    @pytest.mark.anyio
    async def test_partial_failure(self, coordinator, store, recorder):
        store.fail("ghost", NoteNotFoundError("ghost"))
        result = await coordinator.batch_create_links(
            [_spec("alpha"), _spec("ghost"), _spec("beta")]
        )

        assert len(result.committed) == 2
        assert result.failure_count == 1
        assert result.failures[0].index == 1
        assert [e.id for e in coordinator.edges] == [e.id for e in result.committed]
        assert recorder.messages() == ["Created 2 links", "1 links could not be created"]

    @pytest.mark.anyio
    async def test_invalid_spec_reported_without_placeholder(self, coordinator, store):
        result = await coordinator.batch_create_links([_spec(SOURCE), _spec("alpha")])
        assert [item.index for item in result.failures] == [0]
        assert [item.index for item in result.items] == [0, 1]
        assert store.calls == [("batch", 1)]
        assert len(coordinator.edges) == 1

    @pytest.mark.anyio
    async def test_transport_failure_rolls_back_everything(self, coordinator, store):
        await coordinator.create_link(_spec("alpha"))
        before = coordinator.edges
        store.batch_error = TransportError("down")
        with pytest.raises(TransportError):
            await coordinator.batch_create_links([_spec("beta"), _spec("gamma")])
        assert coordinator.edges == before

    @pytest.mark.anyio
    async def test_empty_batch(self, coordinator, store):
        result = await coordinator.batch_create_links([])
        assert result.items == []
        assert store.calls == []

    @pytest.mark.anyio
    async def test_cancelled_batch_removes_placeholders(self, coordinator, store):
        with anyio.CancelScope() as scope:
            scope.cancel()
            await coordinator.batch_create_links([_spec("alpha"), _spec("beta")])
        assert coordinator.edges == []
        assert coordinator.pending_count == 0


class TestViewMaintenance:
    @pytest.mark.anyio
    async def test_load_keeps_pending_placeholders(self, coordinator, store):
        seeded = store.seed(OWNER, _spec("alpha"))
        release = store.gate("beta")
        async with anyio.create_task_group() as tg:
            tg.start_soon(coordinator.create_link, _spec("beta"))
            await store.entered["beta"].wait()
            edges = await coordinator.load()
            assert edges[0].id == seeded.id
            assert edges[1].is_optimistic
            release.set()
        assert [e.target_note_id for e in coordinator.edges] == ["alpha", "beta"]

    @pytest.mark.anyio
    async def test_discard_note_drops_edges_from_deleted_source(self, store, recorder):
        coordinator = OptimisticLinkCoordinator(store, OWNER, notifier=recorder)
        await coordinator.create_link(_spec("alpha"))
        kept = await coordinator.create_link(_spec("beta", source="other"))
        assert coordinator.discard_note(SOURCE) == 1
        assert coordinator.edges == [kept]


class TestMutationLog:
    @pytest.mark.anyio
    async def test_settled_mutations_are_bounded(self, store, recorder, monkeypatch):
        monkeypatch.setattr(config, "mutation_history", 5)
        coordinator = OptimisticLinkCoordinator(
            store, OWNER, source_note_id=SOURCE, notifier=recorder
        )
        for _ in range(50):
            edge = await coordinator.create_link(_spec("alpha"))
            await coordinator.delete_link(edge.id)

        assert coordinator.mutations == {}
        assert coordinator.is_idle
        assert len(coordinator.history) == 5
        assert coordinator.edges == []
