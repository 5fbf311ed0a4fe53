"""Result file rendering and persistence.

Every finished job writes two files keyed by job id, ``{id}.csv`` and
``{id}.json``, holding the same item list, so either download path works
whatever format was requested.

CSV rules:
    Columns are the union of keys across all items in first-seen order.
    ``None`` and missing keys become empty fields.  Values containing a
    comma, double quote, or newline are quoted with inner quotes doubled
    (standard ``csv.QUOTE_MINIMAL``).  Nested lists/dicts are serialised
    as JSON.

JSON rules:
    Pretty-printed array (indent 2).  Keys whose value is ``None`` are
    omitted, so an absent optional field never appears as ``null``.
"""

from __future__ import annotations

import csv
import io
import json
from pathlib import Path
from typing import Any, Iterable

import structlog

from listing_harvester.core.models.jobs import ExportFormat

logger = structlog.get_logger(__name__)


def _csv_cell(value: Any) -> str:
    """Convert one item value to its CSV cell text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def collect_columns(items: Iterable[dict[str, Any]]) -> list[str]:
    """Return the union of keys across ``items`` in first-seen order."""
    columns: dict[str, None] = {}
    for item in items:
        for key in item:
            columns.setdefault(key, None)
    return list(columns)


def render_csv(items: list[dict[str, Any]]) -> str:
    """Render ``items`` as CSV text with a header row.

    An empty item list renders as an empty string (no header).
    """
    if not items:
        return ""
    columns = collect_columns(items)
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(columns)
    for item in items:
        writer.writerow([_csv_cell(item.get(col)) for col in columns])
    return buf.getvalue()


def render_json(items: list[dict[str, Any]]) -> str:
    """Render ``items`` as a pretty-printed JSON array without ``None`` values."""
    cleaned = [{key: value for key, value in item.items() if value is not None} for item in items]
    return json.dumps(cleaned, indent=2, ensure_ascii=False, default=str)


_RENDERERS = {
    ExportFormat.CSV: render_csv,
    ExportFormat.JSON: render_json,
}


def result_path(data_dir: Path, job_id: str, fmt: ExportFormat | str) -> Path:
    """Path of the result file for ``job_id`` in format ``fmt``."""
    return Path(data_dir) / f"{job_id}.{ExportFormat(fmt).value}"


def write_export(items: list[dict[str, Any]], path: Path, fmt: ExportFormat | str) -> Path:
    """Render ``items`` in ``fmt`` and write them to ``path`` (UTF-8)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_RENDERERS[ExportFormat(fmt)](items), encoding="utf-8")
    return path


def save_results(
    items: list[dict[str, Any]],
    job_id: str,
    requested: ExportFormat | str,
    data_dir: Path,
) -> Path:
    """Write both result files for ``job_id``.

    The requested format is written first so a failure on the secondary
    file still leaves the primary one in place.

    Returns:
        Path of the requested-format file (the job's ``result_file_path``).
    """
    primary_fmt = ExportFormat(requested)
    primary = write_export(items, result_path(data_dir, job_id, primary_fmt), primary_fmt)
    secondary = write_export(
        items, result_path(data_dir, job_id, primary_fmt.other), primary_fmt.other
    )
    logger.info(
        "results_saved",
        job_id=job_id,
        items=len(items),
        primary=str(primary),
        secondary=str(secondary),
    )
    return primary


def load_results(data_dir: Path, job_id: str) -> list[dict[str, Any]]:
    """Read the item list back from ``{job_id}.json``.

    Raises:
        FileNotFoundError: If the job has no JSON result file.
    """
    return json.loads(result_path(data_dir, job_id, ExportFormat.JSON).read_text(encoding="utf-8"))
