"""
Export formatter for assembled reports.

Renders the overview report either as JSON (the full report plus export
metadata) or as a flattened CSV with three sections: summary counts, task
distribution by status and the recent activity feed.
"""

import csv
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from io import StringIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..utils.datetime import now_utc, to_iso_string

logger = logging.getLogger(__name__)


class ExportFormat(Enum):
    """Supported export formats"""
    JSON = "json"
    CSV = "csv"


# (label, section, key) rows of the CSV summary section
SUMMARY_ROWS = [
    ("Total Projects", "projects", "total"),
    ("Active Projects", "projects", "active"),
    ("Completed Projects", "projects", "completed"),
    ("Total Tasks", "tasks", "total"),
    ("Completion Rate (%)", "tasks", "completion_rate"),
    ("Overdue Tasks", "tasks", "overdue"),
]


class BaseExporter(ABC):
    """Abstract base class for report exporters"""

    @abstractmethod
    def export_report(self, report: Dict[str, Any], **kwargs) -> str:
        """Export a report dictionary to string format"""
        pass

    @abstractmethod
    def get_file_extension(self) -> str:
        pass


class JSONExporter(BaseExporter):
    """Export to JSON format"""

    def export_report(self, report: Dict[str, Any], **kwargs) -> str:
        export_data = dict(report)
        export_data['export_metadata'] = {
            'exported_at': to_iso_string(kwargs.get('exported_at')),
            'exported_by': kwargs.get('caller_id'),
            'format': ExportFormat.JSON.value,
            'date_range': report.get('date_range'),
        }
        return json.dumps(export_data, indent=2, ensure_ascii=False)

    def get_file_extension(self) -> str:
        return "json"


def _flatten(value: Any) -> str:
    if value is None:
        return ""
    text = str(value)
    return text.replace("\r\n", " ").replace("\n", " ").replace("\r", " ")


class CSVExporter(BaseExporter):
    """Export the overview report to sectioned CSV.

    Fields are quoted only when they contain the delimiter, a quote or a
    line break; embedded line breaks are flattened to spaces first so every
    record occupies exactly one line.
    """

    def export_report(self, report: Dict[str, Any], **kwargs) -> str:
        delimiter = kwargs.get('delimiter', ',')
        overview = report.get('overview', {})
        charts = report.get('charts', {})

        output = StringIO()
        writer = csv.writer(output, delimiter=delimiter, quoting=csv.QUOTE_MINIMAL,
                            lineterminator="\n")

        def row(*fields):
            writer.writerow([_flatten(f) for f in fields])

        row("Dashboard Overview")
        row("Metric", "Value")
        for label, section, key in SUMMARY_ROWS:
            row(label, overview.get(section, {}).get(key, 0))
        writer.writerow([])

        row("Task Distribution by Status")
        row("Status", "Count")
        for bucket in charts.get('task_distribution', {}).get('by_status', []):
            row(bucket['name'], bucket['value'])
        writer.writerow([])

        row("Recent Activities")
        row("Activity", "Entity", "User", "Project", "Date")
        for activity in report.get('recent_activities', []):
            row(activity['type'], activity['entity_name'], activity['user_name'],
                activity['project_name'], activity['occurred_at'])

        content = output.getvalue()
        # One line per record, without a trailing terminator
        return content[:-1] if content.endswith("\n") else content

    def get_file_extension(self) -> str:
        return "csv"


class ExportManager:
    """Manages the export formats and writes exported reports"""

    def __init__(self, delimiter: str = ","):
        self.delimiter = delimiter
        self.exporters = {
            ExportFormat.JSON: JSONExporter(),
            ExportFormat.CSV: CSVExporter(),
        }

    def format(self, report, mode: Union[ExportFormat, str], caller_id: Optional[int] = None,
               exported_at: Optional[datetime] = None) -> bytes:
        """Render a report (anything with ``to_dict``) as UTF-8 bytes."""
        mode = ExportFormat(mode) if isinstance(mode, str) else mode
        if mode not in self.exporters:
            raise ValueError(f"Export format {mode.value} not supported")

        data = report.to_dict() if hasattr(report, 'to_dict') else report
        content = self.exporters[mode].export_report(
            data,
            caller_id=caller_id,
            exported_at=exported_at or now_utc(),
            delimiter=self.delimiter,
        )
        logger.debug(f"Exported report as {mode.value} ({len(content)} characters)")
        return content.encode("utf-8")

    def get_file_extension(self, mode: Union[ExportFormat, str]) -> str:
        mode = ExportFormat(mode) if isinstance(mode, str) else mode
        return self.exporters[mode].get_file_extension()

    def get_supported_formats(self) -> List[str]:
        return [fmt.value for fmt in self.exporters]

    def write(self, content: bytes, output_path: Union[str, Path]) -> Path:
        """Write exported content, creating parent directories."""
        path = Path(output_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        logger.info(f"Export written to {path}")
        return path
