"""Run report generation service."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fleetship.models import ServerOutcome


class RunReportService:
    """Collects phase and per-server results and writes the run report JSON."""

    def __init__(self, report_file: Optional[str], logger):
        self.report_file = report_file
        self.logger = logger
        self.report: Dict[str, Any] = {
            "release_id": None,
            "project": None,
            "mode": None,
            "status": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "targets": [],
            "phases": [],
            "outcomes": [],
            "urls": [],
            "error": None,
        }

    def start_run(self, release_id: str, mode: str):
        self.report["release_id"] = release_id
        self.report["mode"] = mode
        self.report["status"] = "running"
        self.report["started_at"] = self._now()

    def set_targets(self, project: str, targets: List[str]):
        self.report["project"] = project
        self.report["targets"] = list(targets)

    def phase_started(self, phase_name: str):
        self.report["phases"].append(
            {
                "name": phase_name,
                "status": "running",
                "started_at": self._now(),
                "finished_at": None,
                "duration_seconds": None,
                "error": None,
            }
        )

    def phase_finished(self, phase_name: str, status: str, error: Optional[str] = None):
        for phase in reversed(self.report["phases"]):
            if phase["name"] == phase_name and phase["status"] == "running":
                phase["status"] = status
                phase["finished_at"] = self._now()
                phase["error"] = error
                started_at = datetime.fromisoformat(phase["started_at"])
                finished_at = datetime.fromisoformat(phase["finished_at"])
                phase["duration_seconds"] = (finished_at - started_at).total_seconds()
                break

    def add_outcome(self, outcome: ServerOutcome):
        self.report["outcomes"].append(outcome.to_dict())

    def finalize(self, status: str, urls: List[str], error: Optional[str] = None):
        self.report["status"] = status
        self.report["urls"] = list(urls)
        self.report["finished_at"] = self._now()
        if self.report.get("started_at"):
            started_at = datetime.fromisoformat(self.report["started_at"])
            finished_at = datetime.fromisoformat(self.report["finished_at"])
            self.report["duration_seconds"] = (finished_at - started_at).total_seconds()
        self.report["error"] = error
        self.write()

    def write(self):
        if not self.report_file:
            return

        directory = os.path.dirname(self.report_file) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix="run-report-", suffix=".json", dir=directory)
        except OSError as exc:
            self.logger.warning("Could not write run report '%s': %s", self.report_file, exc)
            return

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(self.report, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.report_file)
        except OSError as exc:
            self.logger.warning("Could not write run report '%s': %s", self.report_file, exc)
            try:
                os.remove(temp_path)
            except OSError:
                pass

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
