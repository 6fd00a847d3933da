"""Append run reports to a JSONL file."""
from pathlib import Path

import aiofiles
import orjson

from leaflet_ingest.jobs.report import RunReport


class RunReportExporter:
    """Exports run reports to a JSONL file, one line per run."""

    def __init__(self, path: Path):
        self.path = Path(path)

    async def export(self, report: RunReport) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = orjson.dumps(report.get_summary()) + b"\n"
        async with aiofiles.open(self.path, "ab") as f:
            await f.write(line)
