"""Aggregates per-binary coverage reports and submits them."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Sequence

from jinja2 import Environment, FileSystemLoader

from .errors import UploadError
from .logging import get_logger
from .models import CoverageReport, RunSummary

SUMMARY_JSON = "covpipe-summary.json"
SUMMARY_MARKDOWN = "covpipe-summary.md"


class Uploader(Protocol):
    def upload(self, locations: Sequence[Path]) -> None: ...


class ReportAggregator:
    """Writes the run summary and hands collected reports to the uploader."""

    def __init__(
        self,
        output_root: Path,
        uploader: Uploader | None = None,
        *,
        templates_dir: Path | None = None,
    ) -> None:
        self.output_root = output_root
        self.uploader = uploader
        self.templates_dir = templates_dir or Path(__file__).with_name("templates")
        self._env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.logger = get_logger("report")

    def finalize(self, reports: Sequence[CoverageReport], summary: RunSummary) -> bool:
        """Persist the summary, upload best-effort and log the final count.

        Returns True when the upload succeeded. Upload failures are logged and
        never raised. The instrumented count is always the last line logged.
        """
        for failure in summary.failures:
            self.logger.warning("----> %s was not instrumented: %s", failure.binary.name, failure.reason)

        uploaded = False
        status: Optional[str]
        if self.uploader is None:
            status = "disabled"
            self.logger.info("----> upload disabled")
        elif not reports:
            status = "skipped (no reports)"
            self.logger.info("----> no coverage reports to upload")
        else:
            self.logger.info("----> uploading %d report(s)", len(reports))
            try:
                self.uploader.upload([report.output_dir for report in reports])
            except UploadError as exc:
                status = f"failed ({exc})"
                self.logger.error("----> upload failed: %s", exc)
            else:
                status = "succeeded"
                uploaded = True
                self.logger.info("----> coverage reports done")

        self._write_summary(reports, summary, status)
        self.logger.info("----> ran %d test(s)", summary.instrumented)
        return uploaded

    def _write_summary(
        self, reports: Sequence[CoverageReport], summary: RunSummary, upload_status: Optional[str]
    ) -> None:
        payload = self._payload(reports, summary, upload_status)
        try:
            self.output_root.mkdir(parents=True, exist_ok=True)
            (self.output_root / SUMMARY_JSON).write_text(
                json.dumps(payload, indent=2) + "\n", encoding="utf-8"
            )
            markdown = self._env.get_template("summary.md.j2").render(**payload)
            (self.output_root / SUMMARY_MARKDOWN).write_text(markdown, encoding="utf-8")
        except OSError as exc:
            self.logger.warning("Unable to write run summary to %s: %s", self.output_root, exc)

    @staticmethod
    def _payload(
        reports: Sequence[CoverageReport], summary: RunSummary, upload_status: Optional[str]
    ) -> Dict[str, Any]:
        return {
            "generated_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "instrumented": summary.instrumented,
            "attempted": summary.attempted,
            "success": summary.success,
            "upload_status": upload_status,
            "reports": [
                {"binary": report.binary.name, "output_dir": str(report.output_dir)}
                for report in reports
            ],
            "failures": [
                {"binary": failure.binary.name, "reason": failure.reason}
                for failure in summary.failures
            ],
        }


__all__ = ["ReportAggregator", "SUMMARY_JSON", "SUMMARY_MARKDOWN"]
