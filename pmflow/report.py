"""HTML report rendered from a project's run journal."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from jinja2 import BaseLoader, Environment

from .constants import JOURNAL_FILENAME, META_FILENAME, PM_DIRNAME, REPORT_FILENAME
from .contracts import EventRecord
from .journal import read_journal

logger = logging.getLogger(__name__)

WORKFLOW_KINDS = {
    "workflow_step_start",
    "workflow_step_end",
    "workflow_step_error",
    "workflow_step_skip",
    "workflow_round_start",
    "workflow_round_end",
}

REPORT_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>PM Report - {{ meta.project_name }}</title>
  <style>
    body { font-family: system-ui, sans-serif; margin: 0; background: #f8fafc; color: #0f172a; }
    .container { max-width: 1000px; margin: 0 auto; padding: 40px 20px; }
    .meta-grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(200px, 1fr)); gap: 16px; }
    .meta-card, .card { background: #fff; border: 1px solid #e2e8f0; border-radius: 12px; padding: 16px; }
    .meta-label { font-size: 0.8rem; color: #64748b; text-transform: uppercase; font-weight: 600; }
    .status-badge { padding: 4px 12px; border-radius: 9999px; font-weight: 600; }
    .status-badge.success { background: #d1fae5; color: #065f46; }
    .status-badge.failure { background: #fee2e2; color: #991b1b; }
    .status-badge.unknown { background: #fef3c7; color: #92400e; }
    .command-list { display: flex; flex-direction: column; gap: 16px; }
    .status-success { border-left: 4px solid #10b981; }
    .status-error { border-left: 4px solid #ef4444; }
    .status-running { border-left: 4px solid #f59e0b; }
    .cmd-text { font-family: ui-monospace, monospace; font-weight: 600; word-break: break-all; }
    .cmd-source { color: #64748b; font-size: 0.8rem; }
    pre { background: #1e293b; color: #f8fafc; padding: 12px; overflow-x: auto; white-space: pre-wrap; }
    table { width: 100%; border-collapse: collapse; background: #fff; }
    th, td { padding: 8px 10px; border-bottom: 1px solid #e2e8f0; text-align: left; vertical-align: top; }
  </style>
</head>
<body>
  <div class="container">
    <header>
      <h1>Project Report</h1>
      <div class="meta-grid">
        <div class="meta-card"><div class="meta-label">Project Name</div><div>{{ meta.project_name }}</div></div>
        <div class="meta-card"><div class="meta-label">Created At</div><div>{{ meta.timestamp }}</div></div>
        <div class="meta-card">
          <div class="meta-label">Final Status</div>
          <span class="status-badge {{ status_class }}">{{ status }}</span>
        </div>
      </div>
    </header>

    <h2>Command Execution History</h2>
    <div class="command-list">
    {% for cmd in commands %}
      <div class="card command-card {{ cmd.status_class }}">
        <div class="cmd-text">{{ cmd.display }}</div>
        <div class="cmd-badge">{{ cmd.exit_text }}</div>
        <div class="cmd-source">source: {{ cmd.source }}</div>
        {% if cmd.stdout %}<details><summary>stdout</summary><pre>{{ cmd.stdout }}</pre></details>{% endif %}
        {% if cmd.stderr %}<details><summary>stderr</summary><pre>{{ cmd.stderr }}</pre></details>{% endif %}
        {% if cmd.error %}<div class="cmd-error">error: {{ cmd.error }}</div>{% endif %}
        {% if not cmd.stdout and not cmd.stderr %}<div class="no-output">No output</div>{% endif %}
      </div>
    {% endfor %}
    </div>

    {% if workflow_rows %}
    <h2>Workflow Steps</h2>
    <table>
      <thead><tr><th>Timestamp</th><th>Kind</th><th>Step</th><th>Payload</th></tr></thead>
      <tbody>
      {% for row in workflow_rows %}
        <tr><td>{{ row.ts }}</td><td>{{ row.kind }}</td><td>{{ row.step_id }}</td><td><pre>{{ row.payload }}</pre></td></tr>
      {% endfor %}
      </tbody>
    </table>
    {% endif %}

    {% if verify_summaries %}
    <h2>Verify Results</h2>
    <ul class="verify-list">
    {% for summary in verify_summaries %}
      <li class="verify-item"><pre>{{ summary }}</pre></li>
    {% endfor %}
    </ul>
    {% endif %}

    <h2>Raw Event Log</h2>
    <table>
      <thead><tr><th>Timestamp</th><th>Source</th><th>Kind</th><th>Payload</th></tr></thead>
      <tbody>
      {% for row in raw_rows %}
        <tr><td>{{ row.ts }}</td><td>{{ row.source }}</td><td>{{ row.kind }}</td><td><pre>{{ row.payload }}</pre></td></tr>
      {% endfor %}
      </tbody>
    </table>
  </div>
</body>
</html>
"""

_env = Environment(loader=BaseLoader(), autoescape=True)


def _fmt_json(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def summarize_commands(records: List[EventRecord]) -> List[Dict[str, Any]]:
    """Group command events by command id, in first-seen order."""
    commands: Dict[str, Dict[str, Any]] = {}
    for record in records:
        payload = _as_dict(record.payload)
        if record.kind not in {"command_start", "command_end", "command_error", "stdout", "stderr"}:
            continue
        command_id = str(payload.get("command_id", ""))
        entry = commands.setdefault(
            command_id,
            {
                "id": command_id,
                "command": "",
                "args": [],
                "code": None,
                "finished": False,
                "error": None,
                "source": record.source,
                "stdout": [],
                "stderr": [],
            },
        )
        if record.kind == "command_start":
            entry["command"] = str(payload.get("command", ""))
            entry["args"] = [str(arg) for arg in payload.get("args") or []]
        elif record.kind == "command_end":
            entry["code"] = payload.get("code")
            entry["finished"] = True
        elif record.kind == "command_error":
            entry["error"] = str(payload.get("message", ""))
            entry["finished"] = True
        else:
            entry[record.kind].append(str(payload.get("text", "")))

    summaries = []
    for entry in commands.values():
        code = entry["code"]
        if not entry["finished"]:
            status_class, exit_text = "status-running", "Running"
        elif code == 0:
            status_class, exit_text = "status-success", "Exit Code: 0"
        else:
            status_class = "status-error"
            exit_text = "Spawn Error" if entry["error"] else f"Exit Code: {code}"
        summaries.append(
            {
                **entry,
                "display": " ".join([entry["command"], *entry["args"]]).strip() or entry["id"],
                "stdout": "".join(entry["stdout"]),
                "stderr": "".join(entry["stderr"]),
                "status_class": status_class,
                "exit_text": exit_text,
            }
        )
    return summaries


def final_status(records: List[EventRecord]) -> str:
    for record in reversed(records):
        if record.kind == "result":
            return str(_as_dict(record.payload).get("status", "unknown"))
    return "unknown"


def render_report(meta: Dict[str, Any], records: List[EventRecord]) -> str:
    """Render the report HTML for ``records``."""
    status = final_status(records)
    status_class = {"success": "success", "failed": "failure"}.get(status, "unknown")
    workflow_rows = [
        {
            "ts": record.ts.isoformat(),
            "kind": record.kind,
            "step_id": _as_dict(record.payload).get("step_id", "-"),
            "payload": _fmt_json(record.payload),
        }
        for record in records
        if record.kind in WORKFLOW_KINDS
    ]
    verify_summaries = [
        _fmt_json(record.payload)
        for record in records
        if record.kind in {"verify_end", "verify_skip"}
    ]
    raw_rows = [
        {
            "ts": record.ts.isoformat(),
            "source": record.source,
            "kind": record.kind,
            "payload": _fmt_json(record.payload),
        }
        for record in records
    ]
    return _env.from_string(REPORT_TEMPLATE).render(
        meta=meta,
        status=status,
        status_class=status_class,
        commands=summarize_commands(records),
        workflow_rows=workflow_rows,
        verify_summaries=verify_summaries,
        raw_rows=raw_rows,
    )


def _write_report(project_dir: Path) -> Path:
    pm_dir = project_dir / PM_DIRNAME
    with open(pm_dir / META_FILENAME, encoding="utf-8") as fh:
        meta = json.load(fh)
    records = read_journal(pm_dir / JOURNAL_FILENAME)
    report_path = pm_dir / REPORT_FILENAME
    report_path.write_text(render_report(meta, records), encoding="utf-8")
    return report_path


async def generate_report(project_dir: str | Path) -> Path:
    """Write ``.pm/report.html`` for ``project_dir`` and return its path."""
    report_path = await asyncio.to_thread(_write_report, Path(project_dir))
    logger.info(f"Report written to {report_path}")
    return report_path
