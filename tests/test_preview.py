"""Tests for the preview orchestrator."""

import pytest

from sheetlens.host import InMemoryHost
from sheetlens.ops import PreviewOrchestrator, PreviewState
from sheetlens.ops.preview import bind_to_sheet, operation_fingerprint, target_extent
from sheetlens.snapshot import AISuggestedOperation, CellSnapshot, DiffKind, RangeRef


def _op(tool, **payload):
    return AISuggestedOperation(tool=tool, input=payload)


@pytest.fixture
def orchestrator(memory_host):
    """Orchestrator bound to the shared in-memory host."""
    return PreviewOrchestrator(lambda workbook_id: memory_host)


class TestHelpers:
    """Test fingerprints and target extents."""

    def test_fingerprint_ignores_key_order(self):
        """Test equal payloads hash equally regardless of key order."""
        a = AISuggestedOperation(tool="write_range", input={"range": "A1", "values": [[1]]})
        b = AISuggestedOperation(tool="write_range", input={"values": [[1]], "range": "A1"})
        assert operation_fingerprint(a) == operation_fingerprint(b)

    def test_fingerprint_distinguishes_payloads(self):
        """Test different payloads hash differently."""
        a = _op("write_range", range="A1", values=[[1]])
        b = _op("write_range", range="A1", values=[[2]])
        assert operation_fingerprint(a) != operation_fingerprint(b)

    def test_extent_grows_to_fit_values(self):
        """Test an anchor cell with a grid covers the whole grid."""
        ref = target_extent(_op("write_range", range="B2", values=[[1, 2, 3], [4, 5, 6]]), "S")
        assert ref == RangeRef("S", 1, 1, 2, 3)

    def test_extent_of_malformed_range(self):
        """Test malformed ranges have no extent."""
        assert target_extent(_op("write_range", range="??", values=[[1]]), "S") is None

    def test_bind_to_sheet_prefixes_bare_ranges(self):
        """Test bare ranges gain the sheet and prefixed ones are left alone."""
        bare = bind_to_sheet(_op("write_range", range="C1", values=[[1]]), "My Sheet")
        prefixed = bind_to_sheet(_op("write_range", range="Data!C1", values=[[1]]), "My Sheet")
        assert bare.input["range"] == "'My Sheet'!C1"
        assert prefixed.input["range"] == "Data!C1"
        assert target_extent(bare, "Sheet1") == RangeRef("My Sheet", 0, 2, 0, 2)


class TestStartPreview:
    """Test preview computation."""

    @pytest.mark.asyncio
    async def test_preview_hunks_and_highlights(self, orchestrator, memory_host):
        """Test a preview reports hunks and paints them without writing values."""
        outcome = await orchestrator.start_preview(
            "wb1", [_op("write_range", range="B2:B4", values=[[1300], [300], [50]])], "Sheet1"
        )

        assert outcome.success
        assert outcome.state == PreviewState.PREVIEWING
        assert [(h.cell, h.kind) for h in outcome.hunks] == [
            ("Sheet1!B2", DiffKind.VALUE_CHANGED),
            ("Sheet1!B4", DiffKind.ADDED),
        ]
        assert memory_host.cells["Sheet1!B2"].v == 1200
        assert "Sheet1!B4" not in memory_host.cells
        assert memory_host.visual_state("Sheet1!B4").fill_color is not None

    @pytest.mark.asyncio
    async def test_snapshot_reads_padded_bounding_range(self, orchestrator, memory_host):
        """Test one read per sheet is made for the snapshot."""
        await orchestrator.start_preview(
            "wb1",
            [_op("write_range", range="B2", values=[[1]]), _op("write_range", range="Data!C3", values=[[2]])],
            "Sheet1",
        )
        assert memory_host.calls[:2] == ["read_range", "read_range"]

    @pytest.mark.asyncio
    async def test_no_change_batch(self, orchestrator, memory_host):
        """Test a batch with no observable change returns to Idle."""
        outcome = await orchestrator.start_preview(
            "wb1", [_op("write_range", range="B2", values=[[1200]])], "Sheet1"
        )
        assert not outcome.success
        assert outcome.error == "No changes to preview"
        assert outcome.code == "no_changes"
        assert orchestrator.state("wb1") == PreviewState.IDLE
        assert "write_format_properties" not in memory_host.calls

    @pytest.mark.asyncio
    async def test_only_malformed_ranges(self, orchestrator, memory_host):
        """Test a batch of malformed operations never touches the host."""
        outcome = await orchestrator.start_preview(
            "wb1", [_op("write_range", range="nope", values=[[1]])], "Sheet1"
        )
        assert outcome.error == "No changes to preview"
        assert outcome.code == "no_changes"
        assert memory_host.calls == []

    @pytest.mark.asyncio
    async def test_snapshot_failure(self, orchestrator, memory_host):
        """Test a failed snapshot is reported and leaves the workbook Idle."""
        memory_host.fail_methods.add("read_range")
        outcome = await orchestrator.start_preview(
            "wb1", [_op("write_range", range="B2", values=[[1]])], "Sheet1"
        )
        assert not outcome.success
        assert "read_range" in outcome.error
        assert outcome.code == "snapshot_failed"
        assert orchestrator.state("wb1") == PreviewState.IDLE

    @pytest.mark.asyncio
    async def test_duplicates_are_suppressed(self, orchestrator):
        """Test identical operations in one batch are applied once."""
        op = _op("write_range", range="C1", values=[["x"]])
        await orchestrator.start_preview("wb1", [op, op.model_copy(deep=True)], "Sheet1")
        assert len(orchestrator.session("wb1").operations) == 1

    @pytest.mark.asyncio
    async def test_batch_queued_behind_active_session(self, orchestrator, memory_host):
        """Test a second batch waits and starts when the first resolves."""
        first = await orchestrator.start_preview(
            "wb1", [_op("write_range", range="C1", values=[["first"]])], "Sheet1"
        )
        second = await orchestrator.start_preview(
            "wb1", [_op("write_range", range="D1", values=[["second"]])], "Sheet1"
        )

        assert second.queued
        assert second.session_id == first.session_id
        assert orchestrator.waiting_batches("wb1") == 1

        await orchestrator.apply_changes("wb1")
        session = orchestrator.session("wb1")
        assert session is not None
        assert session.id != first.session_id
        assert [h.cell for h in session.hunks] == ["Sheet1!D1"]
        assert orchestrator.waiting_batches("wb1") == 0

    @pytest.mark.asyncio
    async def test_workbooks_are_independent(self, orchestrator):
        """Test each workbook has its own session."""
        await orchestrator.start_preview("wb1", [_op("write_range", range="C1", values=[[1]])], "Sheet1")
        outcome = await orchestrator.start_preview(
            "wb2", [_op("write_range", range="C2", values=[[1]])], "Sheet1"
        )
        assert not outcome.queued
        assert orchestrator.state("wb2") == PreviewState.PREVIEWING


class TestApplyAndCancel:
    """Test committing and discarding previews."""

    @pytest.mark.asyncio
    async def test_apply_commits_and_restores(self, orchestrator, memory_host):
        """Test apply writes values, restores formatting and returns to Idle."""
        original = memory_host.visual_state("Sheet1!B2")
        await orchestrator.start_preview(
            "wb1", [_op("write_range", range="B2", values=[[999]])], "Sheet1"
        )

        outcome = await orchestrator.apply_changes("wb1")
        assert outcome.success
        assert outcome.state == PreviewState.APPLIED
        assert [r.success for r in outcome.operation_results] == [True]
        assert memory_host.cells["Sheet1!B2"].v == 999
        assert memory_host.visual_state("Sheet1!B2").fill_color == original.fill_color
        assert orchestrator.state("wb1") == PreviewState.IDLE

    @pytest.mark.asyncio
    async def test_apply_keeps_committed_formatting(self, orchestrator, memory_host):
        """Test committed format changes survive highlight restoration."""
        await orchestrator.start_preview(
            "wb1", [_op("format_range", range="A1", font={"bold": True})], "Sheet1"
        )
        await orchestrator.apply_changes("wb1")
        assert memory_host.cells["Sheet1!A1"].s == '{"font":{"bold":true}}'

    @pytest.mark.asyncio
    async def test_apply_requires_previewing(self, orchestrator):
        """Test apply without a preview fails with a state error."""
        outcome = await orchestrator.apply_changes("wb1")
        assert not outcome.success
        assert "idle" in outcome.error
        assert outcome.code == "invalid_state"

    @pytest.mark.asyncio
    async def test_failed_apply_falls_back_to_previewing(self, orchestrator, memory_host):
        """Test a failed write keeps the preview and retry runs only what is left."""
        await orchestrator.start_preview(
            "wb1",
            [
                _op("write_range", range="C1", values=[["ok"]]),
                _op("apply_formula", range="C2", formula="=C1"),
            ],
            "Sheet1",
        )
        memory_host.fail_methods.add("write_formula")

        outcome = await orchestrator.apply_changes("wb1")
        assert not outcome.success
        assert outcome.state == PreviewState.PREVIEWING
        assert [r.success for r in outcome.operation_results] == [True, False]
        assert outcome.code == "apply_failed"
        assert orchestrator.session("wb1").highlighter.is_active

        memory_host.fail_methods.clear()
        memory_host.calls.clear()
        retry = await orchestrator.apply_changes("wb1")
        assert retry.success
        assert [r.index for r in retry.operation_results] == [1]
        assert memory_host.calls.count("write_values") == 0
        assert memory_host.cells["Sheet1!C2"].f == "=C1"

    @pytest.mark.asyncio
    async def test_cancel_restores_and_discards(self, orchestrator, memory_host):
        """Test cancel restores formatting and leaves values untouched."""
        original = memory_host.visual_state("Sheet1!B2")
        await orchestrator.start_preview(
            "wb1", [_op("write_range", range="B2", values=[[1]])], "Sheet1"
        )

        outcome = await orchestrator.cancel_preview("wb1")
        assert outcome.success
        assert orchestrator.state("wb1") == PreviewState.IDLE
        assert memory_host.cells["Sheet1!B2"].v == 1200
        assert memory_host.visual_state("Sheet1!B2") == original

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, orchestrator):
        """Test cancelling twice, or with no preview, is a no-op."""
        await orchestrator.start_preview("wb1", [_op("write_range", range="B2", values=[[1]])], "Sheet1")
        assert (await orchestrator.cancel_preview("wb1")).success
        assert (await orchestrator.cancel_preview("wb1")).success
        assert (await orchestrator.cancel_preview("never-seen")).success

    @pytest.mark.asyncio
    async def test_cancel_after_apply_is_no_op(self, orchestrator, memory_host):
        """Test cancelling an applied preview changes nothing."""
        await orchestrator.start_preview("wb1", [_op("write_range", range="B2", values=[[5]])], "Sheet1")
        await orchestrator.apply_changes("wb1")

        outcome = await orchestrator.cancel_preview("wb1")
        assert outcome.success
        assert memory_host.cells["Sheet1!B2"].v == 5

    @pytest.mark.asyncio
    async def test_cancel_starts_waiting_batch(self, orchestrator):
        """Test the next queued batch starts after a cancel."""
        await orchestrator.start_preview("wb1", [_op("write_range", range="C1", values=[[1]])], "Sheet1")
        await orchestrator.start_preview("wb1", [_op("write_range", range="D1", values=[[2]])], "Sheet1")

        await orchestrator.cancel_preview("wb1")
        assert orchestrator.state("wb1") == PreviewState.PREVIEWING
        assert [h.cell for h in orchestrator.session("wb1").hunks] == ["Sheet1!D1"]

    @pytest.mark.asyncio
    async def test_no_op_waiting_batch_starts_only_the_next_one(self, orchestrator, memory_host):
        """Test a waiting batch with no changes is skipped and only one session starts."""
        await orchestrator.start_preview("wb1", [_op("write_range", range="C1", values=[[1]])], "Sheet1")
        await orchestrator.start_preview("wb1", [_op("write_range", range="B2", values=[[1200]])], "Sheet1")
        await orchestrator.start_preview("wb1", [_op("write_range", range="D1", values=[[2]])], "Sheet1")
        await orchestrator.start_preview("wb1", [_op("write_range", range="E1", values=[[3]])], "Sheet1")

        await orchestrator.cancel_preview("wb1")
        assert [h.cell for h in orchestrator.session("wb1").hunks] == ["Sheet1!D1"]
        assert orchestrator.waiting_batches("wb1") == 1
        assert memory_host.visual_state("Sheet1!E1").fill_color is None

        await orchestrator.cancel_preview("wb1")
        assert [h.cell for h in orchestrator.session("wb1").hunks] == ["Sheet1!E1"]
        assert memory_host.visual_state("Sheet1!D1").fill_color is None

        await orchestrator.cancel_preview("wb1")
        assert orchestrator.state("wb1") == PreviewState.IDLE
        for cell in ("Sheet1!C1", "Sheet1!D1", "Sheet1!E1"):
            assert memory_host.visual_state(cell).fill_color is None

    @pytest.mark.asyncio
    async def test_prune_forgets_idle_workbooks(self, orchestrator):
        """Test prune drops bookkeeping only for workbooks with nothing active."""
        await orchestrator.start_preview("wb1", [_op("write_range", range="C1", values=[[1]])], "Sheet1")
        await orchestrator.start_preview("wb2", [_op("write_range", range="C1", values=[[1]])], "Sheet1")
        await orchestrator.cancel_preview("wb1")

        assert orchestrator.prune() == 1
        assert orchestrator.last_outcome("wb1") is None
        assert orchestrator.last_outcome("wb2") is not None


class TestMultiSheet:
    """Test previews across sheets."""

    @pytest.mark.asyncio
    async def test_hunks_across_sheets(self):
        """Test operations on two sheets produce hunks on both."""
        host = InMemoryHost({"Data!A1": CellSnapshot(v="old")})
        orchestrator = PreviewOrchestrator(lambda workbook_id: host)

        outcome = await orchestrator.start_preview(
            "wb1",
            [_op("write_range", range="Data!A1", values=[["new"]]), _op("write_range", range="A1", values=[[1]])],
            "Sheet1",
        )
        assert {h.cell for h in outcome.hunks} == {"Data!A1", "Sheet1!A1"}
