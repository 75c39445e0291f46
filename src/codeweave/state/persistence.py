"""
Run record persistence for codeweave.

Stores AssemblyRun records so a run can be inspected after the process that
executed it has exited.
"""

from abc import ABC, abstractmethod
from pathlib import Path

import orjson

from codeweave.config.models import AssemblyRun, CodeweaveConfig, StorageBackend
from codeweave.errors import RunNotFoundError

LATEST_FILE = "latest.json"


def _dump(run: AssemblyRun) -> bytes:
    return orjson.dumps(
        run.model_dump(mode="json"),
        option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS,
    )


class RunStore(ABC):
    """Storage for assembly run records."""

    @abstractmethod
    def save(self, run: AssemblyRun) -> None:
        pass

    @abstractmethod
    def load(self, run_id: str) -> AssemblyRun:
        """
        Load one run.

        Raises:
            RunNotFoundError: If no run with ``run_id`` was saved
        """
        pass

    @abstractmethod
    def list_runs(self, project_id: str | None = None) -> list[AssemblyRun]:
        """Saved runs, newest first, optionally for one project."""
        pass

    def latest(
        self, project_id: str | None = None, blueprint_id: str | None = None
    ) -> AssemblyRun | None:
        for run in self.list_runs(project_id):
            if blueprint_id is None or run.blueprint_id == blueprint_id:
                return run
        return None


class MemoryRunStore(RunStore):
    """In-process store, used for dry runs and tests."""

    def __init__(self):
        self._runs: dict[str, bytes] = {}

    def save(self, run: AssemblyRun) -> None:
        # Stored serialized so later mutation of ``run`` does not leak in
        self._runs[run.id] = _dump(run)

    def load(self, run_id: str) -> AssemblyRun:
        if run_id not in self._runs:
            raise RunNotFoundError(f"Run not found: {run_id}")
        return AssemblyRun.model_validate(orjson.loads(self._runs[run_id]))

    def list_runs(self, project_id: str | None = None) -> list[AssemblyRun]:
        runs = [AssemblyRun.model_validate(orjson.loads(data)) for data in self._runs.values()]
        if project_id is not None:
            runs = [run for run in runs if run.project_id == project_id]
        return sorted(runs, key=lambda run: run.started_at, reverse=True)


class FileRunStore(RunStore):
    """JSON files under ``<state_dir>/runs``."""

    def __init__(self, state_dir: Path):
        self.runs_dir = Path(state_dir) / "runs"

    def _run_file(self, run_id: str) -> Path:
        return self.runs_dir / f"{run_id}.json"

    def save(self, run: AssemblyRun) -> None:
        """Write the run file and refresh ``latest.json``."""
        self.runs_dir.mkdir(parents=True, exist_ok=True)
        data = _dump(run)

        with open(self._run_file(run.id), "wb") as f:
            f.write(data)

        with open(self.runs_dir / LATEST_FILE, "wb") as f:
            f.write(data)

    def load(self, run_id: str) -> AssemblyRun:
        run_file = self._run_file(run_id)
        if not run_file.exists():
            raise RunNotFoundError(f"Run not found: {run_id} (looked in {self.runs_dir})")

        with open(run_file, "rb") as f:
            return AssemblyRun.model_validate(orjson.loads(f.read()))

    def list_runs(self, project_id: str | None = None) -> list[AssemblyRun]:
        if not self.runs_dir.exists():
            return []

        runs = []
        for run_file in self.runs_dir.glob("*.json"):
            if run_file.name == LATEST_FILE:
                continue
            with open(run_file, "rb") as f:
                run = AssemblyRun.model_validate(orjson.loads(f.read()))
            if project_id is None or run.project_id == project_id:
                runs.append(run)
        return sorted(runs, key=lambda run: run.started_at, reverse=True)

    def latest(
        self, project_id: str | None = None, blueprint_id: str | None = None
    ) -> AssemblyRun | None:
        latest_file = self.runs_dir / LATEST_FILE
        if project_id is None and blueprint_id is None and latest_file.exists():
            with open(latest_file, "rb") as f:
                return AssemblyRun.model_validate(orjson.loads(f.read()))
        return super().latest(project_id, blueprint_id)


def create_run_store(config: CodeweaveConfig) -> RunStore:
    """Build the run store selected by ``config.storage.backend``."""
    if config.storage.backend == StorageBackend.MEMORY:
        return MemoryRunStore()
    return FileRunStore(config.project.state_dir)
