"""Tests for gate evaluation."""

import pytest

from arcanum.engine.evaluator import GateEvaluator
from arcanum.protocol.schema import GateDefinition, GateType


@pytest.fixture
def evaluator(tmp_path):
    return GateEvaluator(tmp_path)


class TestGateEvaluator:
    @pytest.mark.asyncio
    async def test_no_gate_passes(self, evaluator):
        assert await evaluator.evaluate(None, {}) is True

    @pytest.mark.asyncio
    async def test_string_gate(self, evaluator):
        assert await evaluator.evaluate("state.ready === true", {"ready": True})
        assert not await evaluator.evaluate("state.ready === true", {})

    @pytest.mark.asyncio
    async def test_manual_gate(self, evaluator):
        gate = GateDefinition(type=GateType.MANUAL)
        assert await evaluator.evaluate(gate, {}) is False
        assert await evaluator.evaluate(gate, {}, manual_approved=True) is True

    @pytest.mark.asyncio
    async def test_criteria_and_expression(self, evaluator):
        state = {"tasks": [{"status": "done"}]}
        for gate_type in (GateType.CRITERIA, GateType.EXPRESSION):
            gate = GateDefinition(
                type=gate_type, check="state.tasks.every(t => t.status === 'done')"
            )
            assert await evaluator.evaluate(gate, state)

    @pytest.mark.asyncio
    async def test_unsupported_criteria_is_false(self, evaluator):
        gate = GateDefinition(type=GateType.CRITERIA, check="eval('1')")
        assert await evaluator.evaluate(gate, {}) is False

    @pytest.mark.asyncio
    async def test_file_exists_relative_to_project(self, evaluator, tmp_path):
        gate = GateDefinition(type=GateType.FILE_EXISTS, path="docs/PLAN.md")
        assert await evaluator.evaluate(gate, {}) is False

        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "PLAN.md").write_text("plan")
        assert await evaluator.evaluate(gate, {}) is True

    @pytest.mark.asyncio
    async def test_file_exists_absolute(self, evaluator, tmp_path):
        target = tmp_path / "marker"
        target.write_text("")
        gate = GateDefinition(type=GateType.FILE_EXISTS, path=str(target))
        assert await evaluator.evaluate(gate, {})

    @pytest.mark.asyncio
    async def test_status_gate(self, evaluator):
        gate = GateDefinition(type=GateType.STATUS, field="review", value="approved")
        assert await evaluator.evaluate(gate, {"review": "approved"})
        assert not await evaluator.evaluate(gate, {"review": "pending"})
        assert not await evaluator.evaluate(gate, {})

    @pytest.mark.asyncio
    async def test_status_gate_string_comparison(self, evaluator):
        gate = GateDefinition.model_validate(
            {"type": "status", "field": "attempts", "value": 3}
        )
        assert await evaluator.evaluate(gate, {"attempts": 3})

        undefined = GateDefinition(type=GateType.STATUS, field="missing", value="undefined")
        assert await evaluator.evaluate(undefined, {})
