"""
Unit tests for run records, their state machine and persistence.
"""

import time

import pytest

from codeweave.config.models import (
    AssemblyRun,
    AssemblyStatus,
    CodeweaveConfig,
    ErrorKind,
    Severity,
    StorageBackend,
    StorageConfig,
    ValidationError,
)
from codeweave.errors import InvalidTransitionError, RunNotFoundError
from codeweave.state.persistence import FileRunStore, MemoryRunStore, create_run_store


def _run(**kwargs) -> AssemblyRun:
    return AssemblyRun(stack_id="nextjs-mongodb", **kwargs)


class TestRunStateMachine:
    """Test AssemblyRun status transitions."""

    def test_forward_moves(self):
        run = _run()
        run.transition(AssemblyStatus.SCAFFOLDING)
        run.transition(AssemblyStatus.VALIDATING)
        run.transition(AssemblyStatus.COMPLETED)

        assert run.status == AssemblyStatus.COMPLETED
        assert run.completed_at is not None

    def test_backward_move_rejected(self):
        run = _run()
        run.transition(AssemblyStatus.MERGING)

        with pytest.raises(InvalidTransitionError):
            run.transition(AssemblyStatus.SCAFFOLDING)

    def test_failed_from_any_state_and_final(self):
        run = _run()
        run.transition(AssemblyStatus.GENERATING)
        run.transition(AssemblyStatus.FAILED)

        with pytest.raises(InvalidTransitionError):
            run.transition(AssemblyStatus.COMPLETED)

    def test_completed_is_final(self):
        run = _run()
        run.transition(AssemblyStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            run.transition(AssemblyStatus.FAILED)

    def test_success_requires_no_errors(self):
        run = _run()
        run.transition(AssemblyStatus.COMPLETED)
        assert run.success

        run.validation_errors = [
            ValidationError(file="a.ts", message="warn", severity=Severity.WARNING)
        ]
        assert run.success

        run.validation_errors.append(
            ValidationError(file="a.ts", message="bad input", kind=ErrorKind.INPUT)
        )
        assert not run.success
        assert run.summary()["errors"] == 1
        assert run.summary()["warnings"] == 1


class TestMemoryRunStore:
    """Test the in-process store."""

    def test_save_is_a_snapshot(self):
        store = MemoryRunStore()
        run = _run()
        store.save(run)
        run.log("changed after save")

        assert store.load(run.id).logs == []

    def test_missing_run(self):
        with pytest.raises(RunNotFoundError):
            MemoryRunStore().load("run_0_missing")


class TestFileRunStore:
    """Test JSON file persistence."""

    def test_round_trip_keeps_errors(self, tmp_dir):
        store = FileRunStore(tmp_dir)
        run = _run(project_id="shop", blueprint_id="web")
        run.validation_errors = [
            ValidationError(file="src/a.ts", line=3, message="Unresolved import: ./b", specifier="./b")
        ]
        run.transition(AssemblyStatus.COMPLETED)
        store.save(run)

        loaded = store.load(run.id)
        assert loaded.status == AssemblyStatus.COMPLETED
        assert loaded.validation_errors[0].specifier == "./b"
        assert not loaded.success
        assert (tmp_dir / "runs" / f"{run.id}.json").exists()

    def test_list_and_latest(self, tmp_dir):
        store = FileRunStore(tmp_dir)
        now = time.time()
        older = _run(project_id="shop", blueprint_id="web", started_at=now - 10)
        newer = _run(project_id="shop", blueprint_id="api", started_at=now)
        other = _run(project_id="blog", started_at=now - 5)
        for run in (older, newer, other):
            store.save(run)

        assert [r.id for r in store.list_runs("shop")] == [newer.id, older.id]
        assert len(store.list_runs()) == 3
        # latest.json tracks the last save
        assert store.latest().id == other.id
        assert store.latest("shop", "web").id == older.id
        assert store.latest("nope") is None

    def test_missing_run(self, tmp_dir):
        with pytest.raises(RunNotFoundError):
            FileRunStore(tmp_dir).load("run_0_missing")

    def test_empty_store(self, tmp_dir):
        assert FileRunStore(tmp_dir / "nothing").list_runs() == []


def test_create_run_store(tmp_dir):
    config = CodeweaveConfig()
    config.project.state_dir = tmp_dir
    assert isinstance(create_run_store(config), FileRunStore)

    config.storage = StorageConfig(backend=StorageBackend.MEMORY)
    assert isinstance(create_run_store(config), MemoryRunStore)
