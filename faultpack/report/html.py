"""Self-contained interactive HTML dashboard."""

from __future__ import annotations

from html import escape
import json
import re

from faultpack.classify.suggestions import suggest_fix
from faultpack.core.models import RuntimeErrorRecord
from faultpack.core.types import REPORTED_CATEGORIES, SEVERITIES
from faultpack.report.models import ErrorReport

_PLACEHOLDER = re.compile(r"__(TITLE|HEADER|CARDS|FILTERS|ROWS|SUGGESTIONS)__")
_CONTEXT_FIELDS = ("url", "method", "status", "reason", "action", "logger", "thread")


def render_html(report: ErrorReport) -> str:
    """Render a filterable dashboard; all dynamic text is HTML-escaped."""
    parts = {
        "TITLE": escape(f"Runtime Error Report {report.session_id}"),
        "HEADER": _render_header(report),
        "CARDS": _render_cards(report),
        "FILTERS": _render_filters(),
        "ROWS": _render_rows(report),
        "SUGGESTIONS": _render_suggestions(report),
    }
    # Single pass, so placeholder-like text inside the report is left alone.
    return _PLACEHOLDER.sub(lambda match: parts[match.group(1)], _PAGE_TEMPLATE)


def _render_header(report: ErrorReport) -> str:
    return (
        "<h1>Runtime Error Report</h1>"
        f'<div class="sub">Session <code>{escape(report.session_id)}</code> '
        f"&middot; generated {escape(report.generated_at)} "
        f"&middot; report version {escape(report.report_version)}</div>"
    )


def _render_cards(report: ErrorReport) -> str:
    cards = [
        f'<div class="card total"><span class="count">{report.total_errors}</span>'
        '<span class="label">total</span></div>'
    ]
    for severity in SEVERITIES:
        count = int(report.summary["bySeverity"].get(severity, 0))
        cards.append(
            f'<div class="card sev-{severity}"><span class="count">{count}</span>'
            f'<span class="label">{severity}</span></div>'
        )
    categories = "".join(
        f"<li><span>{escape(category)}</span><b>{int(count)}</b></li>"
        for category, count in report.summary["byCategory"].items()
    )
    return "".join(cards) + f'<ul class="categories">{categories}</ul>'


def _render_filters() -> str:
    category_options = "".join(
        f'<option value="{escape(category)}">{escape(category)}</option>'
        for category in REPORTED_CATEGORIES
    )
    severity_options = "".join(
        f'<option value="{severity}">{severity}</option>' for severity in SEVERITIES
    )
    return (
        '<label>Category <select id="filter-category"><option value="">all</option>'
        f"{category_options}</select></label>"
        '<label>Severity <select id="filter-severity"><option value="">all</option>'
        f"{severity_options}</select></label>"
        '<label>Search <input id="filter-search" type="text" placeholder="message, url, action" /></label>'
    )


def _render_rows(report: ErrorReport) -> str:
    if not report.entries:
        return '<tr class="empty"><td colspan="6">No runtime errors were captured in this session.</td></tr>'
    return "".join(_render_row(entry) for entry in report.entries)


def _render_row(entry: RuntimeErrorRecord) -> str:
    details = [
        f"<dt>{escape(key)}</dt><dd><code>{escape(str(entry.context[key]))}</code></dd>"
        for key in _CONTEXT_FIELDS
        if entry.context.get(key) not in (None, "")
    ]
    params = entry.context.get("params")
    if params is not None:
        details.append(
            "<dt>params</dt>"
            f"<dd><pre>{escape(json.dumps(params, indent=2, sort_keys=True))}</pre></dd>"
        )
    details.append(f"<dt>fix</dt><dd>{escape(suggest_fix(entry))}</dd>")
    if entry.rule:
        details.append(f"<dt>rule</dt><dd><code>{escape(entry.rule)}</code></dd>")
    stack = f"<pre class=\"stack\">{escape(entry.stack)}</pre>" if entry.stack else ""

    return (
        f'<tr class="entry" data-category="{escape(entry.category)}" '
        f'data-severity="{escape(entry.severity)}">'
        f"<td><code>{escape(entry.id)}</code></td>"
        f'<td><span class="badge sev-{escape(entry.severity)}">{escape(entry.severity)}</span></td>'
        f"<td>{escape(entry.category)}</td>"
        f"<td>{escape(entry.source_type)}</td>"
        f"<td>{escape(entry.timestamp)}</td>"
        "<td>"
        f"<details><summary>{escape(entry.message)}</summary>"
        f"<dl>{''.join(details)}</dl>{stack}</details>"
        "</td></tr>"
    )


def _render_suggestions(report: ErrorReport) -> str:
    if not report.fix_suggestions:
        return "<p>No fix suggestions: nothing was captured.</p>"
    items = "".join(
        f"<li><b>{escape(category)}</b>: {escape(suggestion)}</li>"
        for category, suggestion in report.fix_suggestions.items()
    )
    return f"<ul>{items}</ul>"


_PAGE_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>__TITLE__</title>
  <style>
    :root {
      --bg: #f7f4ed;
      --panel: #fffdfa;
      --ink: #1f2933;
      --muted: #6b7280;
      --border: #d6d3d1;
      --critical: #b91c1c;
      --high: #c2410c;
      --medium: #b45309;
      --low: #047857;
    }

    * { box-sizing: border-box; }
    body {
      margin: 0;
      font-family: "Avenir Next", "Trebuchet MS", "Segoe UI", sans-serif;
      color: var(--ink);
      background: var(--bg);
    }

    header, main { padding: 16px 24px; }
    header { border-bottom: 1px solid var(--border); background: var(--panel); }
    h1 { margin: 0; font-size: 1.5rem; }
    .sub { margin-top: 6px; color: var(--muted); font-size: 0.92rem; }

    .cards { display: flex; flex-wrap: wrap; gap: 12px; margin: 16px 0; }
    .card {
      min-width: 110px;
      padding: 10px 14px;
      border: 1px solid var(--border);
      border-radius: 8px;
      background: var(--panel);
    }
    .card .count { display: block; font-size: 1.6rem; font-weight: 700; }
    .card .label { color: var(--muted); font-size: 0.85rem; }
    .categories { list-style: none; padding: 0; margin: 0; display: flex; flex-wrap: wrap; gap: 8px; }
    .categories li { padding: 4px 8px; border: 1px solid var(--border); border-radius: 6px; }
    .categories b { margin-left: 6px; }

    .filters { display: flex; flex-wrap: wrap; gap: 16px; margin-bottom: 12px; }
    .filters label { font-size: 0.85rem; font-weight: 700; }
    .filters select, .filters input { margin-left: 6px; padding: 6px 8px; }

    table { width: 100%; border-collapse: collapse; background: var(--panel); }
    th, td { padding: 8px; border-bottom: 1px solid var(--border); text-align: left; vertical-align: top; }
    .badge { padding: 2px 8px; border-radius: 10px; color: #fff; font-size: 0.8rem; }
    .badge.sev-critical, .sev-critical .count { background: var(--critical); color: #fff; }
    .badge.sev-high { background: var(--high); }
    .badge.sev-medium { background: var(--medium); }
    .badge.sev-low { background: var(--low); }
    dl { display: grid; grid-template-columns: max-content 1fr; gap: 4px 12px; }
    dt { font-weight: 700; }
    pre { white-space: pre-wrap; word-break: break-word; margin: 0; }
    pre.stack { margin-top: 8px; padding: 8px; background: #f3f0e8; border-radius: 6px; }
  </style>
</head>
<body>
  <header>__HEADER__</header>
  <main>
    <section class="cards">__CARDS__</section>
    <section class="filters">__FILTERS__</section>
    <table>
      <thead>
        <tr><th>ID</th><th>Severity</th><th>Category</th><th>Source</th><th>Captured</th><th>Message</th></tr>
      </thead>
      <tbody id="entries">__ROWS__</tbody>
    </table>
    <section class="suggestions">
      <h2>Fix suggestions</h2>
      __SUGGESTIONS__
    </section>
  </main>
  <script>
    (function () {
      const category = document.getElementById("filter-category");
      const severity = document.getElementById("filter-severity");
      const search = document.getElementById("filter-search");

      function apply() {
        const needle = search.value.trim().toLowerCase();
        document.querySelectorAll("#entries tr.entry").forEach(function (row) {
          const visible =
            (!category.value || row.dataset.category === category.value) &&
            (!severity.value || row.dataset.severity === severity.value) &&
            (!needle || row.textContent.toLowerCase().indexOf(needle) !== -1);
          row.style.display = visible ? "" : "none";
        });
      }

      category.addEventListener("change", apply);
      severity.addEventListener("change", apply);
      search.addEventListener("input", apply);
    })();
  </script>
</body>
</html>
"""
