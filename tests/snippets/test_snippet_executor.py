"""Tests for snippet execution and result normalisation."""

import textwrap

import pytest

from arcanum.protocol.schema import SnippetDefinition
from arcanum.snippets.executor import HookRunner, SnippetExecutor
from arcanum.snippets.loader import SnippetLoader
from arcanum.snippets.types import (
    AbortResult,
    OkResult,
    PatchResult,
    SnippetContext,
    SnippetMeta,
    TransitionRequest,
)

META = SnippetMeta(workflow_id="w", step_id="a", transition_to="b")


@pytest.fixture
def write_snippet(tmp_path):
    (tmp_path / "snippets").mkdir()

    def _write(name: str, source: str) -> SnippetExecutor:
        (tmp_path / "snippets" / f"{name}.py").write_text(textwrap.dedent(source))
        loader = SnippetLoader(tmp_path, {name: SnippetDefinition(file=f"{name}.py")})
        return SnippetExecutor(loader, tmp_path)

    return _write


class TestSnippetExecutor:
    def test_is_hook_runner(self, tmp_path):
        executor = SnippetExecutor(SnippetLoader(tmp_path), tmp_path)
        assert isinstance(executor, HookRunner)

    @pytest.mark.asyncio
    async def test_sync_ok(self, write_snippet):
        executor = write_snippet("hook", "def run(ctx):\n    return {'type': 'ok'}\n")
        assert await executor.execute("hook", {}, META) == OkResult()

    @pytest.mark.asyncio
    async def test_async_patch(self, write_snippet):
        executor = write_snippet(
            "hook",
            """
            async def run(ctx):
                return {"type": "patch", "patch": {"count": ctx.state["count"] + 1}}
            """,
        )
        result = await executor.execute("hook", {"count": 1}, META)
        assert result == PatchResult(patch={"count": 2})

    @pytest.mark.asyncio
    async def test_transition_request(self, write_snippet):
        executor = write_snippet(
            "hook", "def run(ctx):\n    return {'type': 'transition', 'to': 'c', 'reason': 'skip'}\n"
        )
        result = await executor.execute("hook", {}, META)
        assert isinstance(result, TransitionRequest)
        assert result.to == "c"

    @pytest.mark.asyncio
    async def test_model_result(self, write_snippet):
        executor = write_snippet(
            "hook",
            """
            from arcanum.snippets.types import AbortResult

            def run(ctx):
                return AbortResult(reason="stop")
            """,
        )
        assert await executor.execute("hook", {}, META) == AbortResult(reason="stop")

    @pytest.mark.asyncio
    async def test_exception_becomes_abort(self, write_snippet):
        executor = write_snippet("hook", "def run(ctx):\n    raise ValueError('bad input')\n")
        result = await executor.execute("hook", {}, META)
        assert isinstance(result, AbortResult)
        assert result.reason == "bad input"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "returned",
        ["None", "'ok'", "{'status': 'ok'}", "{'type': 'explode'}", "{'type': 'transition'}"],
    )
    async def test_invalid_result_becomes_abort(self, write_snippet, returned):
        executor = write_snippet("hook", f"def run(ctx):\n    return {returned}\n")
        result = await executor.execute("hook", {}, META)
        assert isinstance(result, AbortResult)
        assert "invalid result" in result.reason

    @pytest.mark.asyncio
    async def test_missing_snippet_becomes_abort(self, tmp_path):
        executor = SnippetExecutor(SnippetLoader(tmp_path), tmp_path)
        result = await executor.execute("ghost", {}, META)
        assert isinstance(result, AbortResult)

    @pytest.mark.asyncio
    async def test_set_state_turns_ok_into_patch(self, write_snippet):
        executor = write_snippet(
            "hook",
            """
            def run(ctx):
                ctx.set_state({"picked": ctx.meta.transition_to})
                return {"type": "ok"}
            """,
        )
        assert await executor.execute("hook", {}, META) == PatchResult(patch={"picked": "b"})

    @pytest.mark.asyncio
    async def test_set_state_merges_into_patch(self, write_snippet):
        executor = write_snippet(
            "hook",
            """
            def run(ctx):
                ctx.set_state({"a": 1, "b": 1})
                return {"type": "patch", "patch": {"b": 2}}
            """,
        )
        assert await executor.execute("hook", {}, META) == PatchResult(patch={"a": 1, "b": 2})

    @pytest.mark.asyncio
    async def test_state_is_read_only(self, write_snippet):
        executor = write_snippet(
            "hook",
            """
            def run(ctx):
                ctx.state["x"] = 1
                return {"type": "ok"}
            """,
        )
        state = {"x": 0}
        result = await executor.execute("hook", state, META)
        assert isinstance(result, AbortResult)
        assert state == {"x": 0}


class TestSnippetContext:
    def test_snapshot_is_deep_copy(self, tmp_path):
        state = {"tasks": [{"id": "1"}]}
        ctx = SnippetContext.create("hook", state, META, tmp_path)
        ctx.state["tasks"].append({"id": "2"})
        assert state == {"tasks": [{"id": "1"}]}

    def test_log(self, tmp_path, caplog):
        ctx = SnippetContext.create("hook", {}, META, tmp_path)
        with caplog.at_level("INFO", logger="arcanum.snippets.hook"):
            ctx.log("picked", {"id": "1"})
        assert "picked {'id': '1'}" in caplog.text
