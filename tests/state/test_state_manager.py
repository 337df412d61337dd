"""Tests for the persisted state manager."""

import json

import pytest

from arcanum.exceptions import (
    MaxNestingDepthExceededError,
    NotNestedError,
    SchemaValidationError,
    StateConsistencyError,
    StateNotFoundError,
)
from arcanum.protocol.schema import RunStatus, StateFormat
from arcanum.state.manager import StateManager, atomic_write_text


@pytest.fixture
def manager(tmp_path):
    return StateManager(tmp_path)


class TestLoadSave:
    @pytest.mark.asyncio
    async def test_load_missing(self, manager):
        assert not await manager.exists()
        with pytest.raises(StateNotFoundError):
            await manager.load()

    @pytest.mark.asyncio
    async def test_initialize_and_reload(self, manager, tmp_path):
        await manager.initialize("task_loop", "decompose")
        assert await manager.exists()
        assert manager.state_path == tmp_path / ".opencode" / "state" / "current.json"

        fresh = StateManager(tmp_path)
        state = await fresh.load()
        assert state.workflow == "task_loop"
        assert state.step == "decompose"
        assert state.status == RunStatus.RUNNING
        assert state.updated_at is not None

    @pytest.mark.asyncio
    async def test_round_trip_preserves_passthrough(self, manager):
        await manager.initialize("w", "a")
        tasks = [{"id": "1", "status": "pending", "meta": {"x": [1, 2]}}]
        await manager.merge({"tasks": tasks, "sprint": {"n": 4}})

        state = await StateManager(manager.project_dir).load()
        assert state.extra["tasks"] == tasks
        assert state.extra["sprint"] == {"n": 4}

    @pytest.mark.asyncio
    async def test_multi_format_file_name(self, tmp_path):
        manager = StateManager(tmp_path, format=StateFormat.MULTI)
        await manager.initialize("w", "a")
        assert (tmp_path / ".opencode" / "state" / "workflow.json").is_file()

    @pytest.mark.asyncio
    async def test_custom_state_dir(self, tmp_path):
        manager = StateManager(tmp_path, state_dir="runtime")
        await manager.initialize("w", "a")
        assert (tmp_path / "runtime" / "current.json").is_file()

    @pytest.mark.asyncio
    async def test_invalid_json(self, manager):
        manager.state_path.parent.mkdir(parents=True)
        manager.state_path.write_text("{not json")
        with pytest.raises(SchemaValidationError):
            await manager.load()

    @pytest.mark.asyncio
    async def test_missing_required_field(self, manager):
        manager.state_path.parent.mkdir(parents=True)
        manager.state_path.write_text(json.dumps({"workflow": "w"}))
        with pytest.raises(SchemaValidationError, match="step"):
            await manager.load()

    @pytest.mark.asyncio
    async def test_inconsistent_depth_on_load(self, manager):
        manager.state_path.parent.mkdir(parents=True)
        manager.state_path.write_text(
            json.dumps({"workflow": "w", "step": "a", "depth": 0, "call_stack": [{"workflow": "p", "step": "x"}]})
        )
        with pytest.raises(StateConsistencyError):
            await manager.load()

    @pytest.mark.asyncio
    async def test_save_refuses_inconsistent_state(self, manager):
        await manager.initialize("w", "a")
        with pytest.raises(StateConsistencyError):
            await manager.merge({"depth": 3})
        assert (await manager.load()).depth == 0

    @pytest.mark.asyncio
    async def test_get_state_returns_copy(self, manager):
        await manager.initialize("w", "a")
        state = await manager.get_state()
        state.call_stack.append(None)
        assert (await manager.get_state()).call_stack == []

    @pytest.mark.asyncio
    async def test_update_status(self, manager):
        await manager.initialize("w", "a")
        state = await manager.update_status("waiting")
        assert state.status == RunStatus.WAITING
        assert manager.peek().status == RunStatus.WAITING

    @pytest.mark.asyncio
    async def test_reset(self, manager):
        await manager.initialize("w", "a")
        await manager.reset()
        assert not await manager.exists()
        assert manager.peek() is None


class TestNesting:
    @pytest.mark.asyncio
    async def test_invoke_and_return_are_symmetric(self, manager):
        await manager.initialize("parent", "call")
        await manager.merge({"tasks": [1]})

        child = await manager.invoke_child(
            "child", "start", input={"tasks": [1]}, resume_to="after"
        )
        assert child.workflow == "child"
        assert child.step == "start"
        assert child.depth == 1
        assert len(child.call_stack) == 1
        assert child.call_stack[0].workflow == "parent"
        assert child.call_stack[0].step == "call"
        assert child.nested.input == {"tasks": [1]}

        parent = await manager.return_to_parent({"result": "ok"})
        assert parent.workflow == "parent"
        assert parent.step == "after"
        assert parent.depth == 0
        assert parent.call_stack == []
        assert parent.nested is None
        assert parent.extra["result"] == "ok"
        assert parent.child_result == {"result": "ok"}
        assert parent.status == RunStatus.RUNNING

    @pytest.mark.asyncio
    async def test_return_records_raw_child_result(self, manager):
        await manager.initialize("parent", "call")
        await manager.invoke_child("child", "start")
        parent = await manager.return_to_parent(
            {"summary": "ok"}, child_result={"summary": "ok", "log": [1, 2]}
        )
        assert parent.extra["summary"] == "ok"
        assert "log" not in parent.extra
        assert parent.child_result == {"summary": "ok", "log": [1, 2]}

    @pytest.mark.asyncio
    async def test_preview_does_not_write(self, manager):
        await manager.initialize("parent", "call")
        candidate = await manager.preview({"step": "elsewhere"})
        assert candidate.step == "elsewhere"
        assert (await manager.load()).step == "call"

        with pytest.raises(StateConsistencyError):
            await manager.preview({"depth": 2})

    @pytest.mark.asyncio
    async def test_return_without_resume_step(self, manager):
        await manager.initialize("parent", "call")
        await manager.invoke_child("child", "start")
        parent = await manager.return_to_parent()
        assert parent.step == "call"
        assert parent.child_result == {}

    @pytest.mark.asyncio
    async def test_nested_twice(self, manager):
        await manager.initialize("a", "a1")
        await manager.invoke_child("b", "b1")
        await manager.invoke_child("c", "c1")
        assert await manager.get_depth() == 2
        assert [e.workflow for e in await manager.get_call_stack()] == ["a", "b"]

        state = await manager.return_to_parent()
        assert (state.workflow, state.step, state.depth) == ("b", "b1", 1)
        assert await manager.is_nested()

    @pytest.mark.asyncio
    async def test_max_depth_leaves_state_untouched(self, tmp_path):
        manager = StateManager(tmp_path, max_depth=1)
        await manager.initialize("a", "a1")
        await manager.invoke_child("b", "b1")
        before = manager.state_path.read_text()

        with pytest.raises(MaxNestingDepthExceededError):
            await manager.invoke_child("c", "c1")
        assert manager.state_path.read_text() == before

    @pytest.mark.asyncio
    async def test_return_at_top_level(self, manager):
        await manager.initialize("a", "a1")
        with pytest.raises(NotNestedError):
            await manager.return_to_parent()


class TestAtomicWrite:
    def test_writes_and_replaces(self, tmp_path):
        target = tmp_path / "nested" / "file.json"
        atomic_write_text(target, "one")
        atomic_write_text(target, "two")
        assert target.read_text() == "two"
        assert [p.name for p in target.parent.iterdir()] == ["file.json"]
