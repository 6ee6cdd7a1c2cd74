"""Tests for reconciliation run tracking."""

from listing_hub.db.database import Database
from listing_hub.db.runs import RunRepository
from listing_hub.models import BatchResult, PipelineState, RecordOutcome


def _result(batch_id: str = "abc123") -> BatchResult:
    return BatchResult(
        batch_id=batch_id,
        state=PipelineState.COMMITTED,
        raw_ids=[1, 2, 3, 4],
        outcomes={
            1: RecordOutcome.CREATED,
            2: RecordOutcome.CREATED,
            3: RecordOutcome.UPDATED,
            4: RecordOutcome.REJECTED,
        },
    )


class TestRunRepository:
    async def test_no_runs(self, db: Database) -> None:
        assert await RunRepository(db).get_last_run() is None

    async def test_records_committed_run(self, db: Database) -> None:
        runs = RunRepository(db)
        run_id = await runs.record_run(_result(), "committed")
        assert run_id > 0

        last = await runs.get_last_run()
        assert last is not None
        assert last["batch_id"] == "abc123"
        assert last["status"] == "committed"
        assert last["attempted_ids"] == [1, 2, 3, 4]
        assert last["created_count"] == 2
        assert last["updated_count"] == 1
        assert last["rejected_count"] == 1
        assert last["skipped_count"] == 0
        assert last["error_message"] is None
        assert last["duration_seconds"] >= 0

    async def test_records_rolled_back_run(self, db: Database) -> None:
        runs = RunRepository(db)
        await runs.record_run(_result("first"), "committed")
        await runs.record_run(
            _result("second"), "rolled_back", error_message="OperationalError: disk I/O error"
        )

        last = await runs.get_last_run()
        assert last is not None
        assert last["batch_id"] == "second"
        assert last["status"] == "rolled_back"
        assert last["error_message"] == "OperationalError: disk I/O error"

