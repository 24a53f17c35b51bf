"""
Jinja2 rendering for report emails.

Templates are kept inline; there are only two and they are never edited
separately from the code that fills them.
"""

from datetime import datetime
from typing import Any, Dict, List

from jinja2 import DictLoader, Environment, select_autoescape

REPORT_HTML = """<!DOCTYPE html>
<html>
  <head>
    <style>
      body { font-family: Arial, sans-serif; color: #333; }
      h1 { color: #111110; }
      table { width: 100%; border-collapse: collapse; }
      th, td { border: 1px solid #ddd; padding: 8px; text-align: left; }
      th { background-color: #f5d90a; text-align: center; }
      a { color: #0066cc; text-decoration: none; }
    </style>
  </head>
  <body>
    <h1>GitHub Issues Report</h1>
    <p>Dear {{ recipient }},</p>
    <p>Here is your report for issues related to "{{ keyword }}" in the repository {{ repo_url }}:</p>
    <table>
      <tr>
        <th>Title</th>
        <th>Relevance Score</th>
        <th>Explanation</th>
        <th>Created At</th>
        <th>Labels</th>
      </tr>
      {% for issue in issues %}
      <tr>
        <td><a href="{{ issue.link }}">{{ issue.title }}</a></td>
        <td>{{ issue.relevance_score }}</td>
        <td>{{ issue.explanation }}</td>
        <td>{{ issue.created_on }}</td>
        <td>{{ issue.labels | join(", ") }}</td>
      </tr>
      {% endfor %}
    </table>
    <p>These are the most relevant issues based on your keyword.</p>
    <p>Thank you for using GitHub Issue Watcher!</p>
  </body>
</html>
"""

REPORT_TEXT = """GitHub Issues Report
Repository: {{ repo_url }}
Keyword: {{ keyword }}

{% for issue in issues -%}
[{{ issue.relevance_score }}] #{{ issue.number }} {{ issue.title }}
    {{ issue.explanation }}
    {{ issue.link }}
{% endfor %}
Thank you for using GitHub Issue Watcher!
"""

NO_RELEVANT_HTML = """<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>GitHub Issues Report - No Relevant Issues Found</h2>
  <p>Repository: <a href="{{ repo_url }}">{{ repo_url }}</a></p>
  <p>Keyword: <strong>{{ keyword }}</strong></p>
  <p>Total issues analyzed: {{ total_issues }}</p>
  <hr style="margin: 20px 0; border: none; border-top: 1px solid #eee;">
  <p>No issues with relevance score above {{ threshold }} were found.</p>
  <p>You can modify the keyword or check the repository directly for more details.</p>
  <hr style="margin: 20px 0; border: none; border-top: 1px solid #eee;">
  <p style="color: #666; font-size: 12px;">This is an automated message from GitHub Issue Watcher.</p>
</div>
"""

_env = Environment(
    loader=DictLoader(
        {
            "report.html": REPORT_HTML,
            "report.txt": REPORT_TEXT,
            "no_relevant.html": NO_RELEVANT_HTML,
        }
    ),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=True),
)


def _created_on(value: Any) -> str:
    if not value:
        return ""
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return str(value)


def _issue_view(repo_url: str, issue: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "number": issue.get("number"),
        "title": issue.get("title", ""),
        "relevance_score": issue.get("relevance_score", 0),
        "explanation": issue.get("explanation", ""),
        "labels": issue.get("labels") or [],
        "created_on": _created_on(issue.get("created_at")),
        "link": issue.get("url") or f"{repo_url.rstrip('/')}/issues/{issue.get('number')}",
    }


def build_subject(repo_url: str, is_final: bool, sequence: int | None) -> str:
    """``GIW - GitHub Issues Report for <repo> (Final|Partial[ - n])``."""
    kind = "Final" if is_final else "Partial"
    suffix = f" - {sequence}" if sequence else ""
    return f"GIW - GitHub Issues Report for {repo_url} ({kind}{suffix})"


def render_report(
    repo_url: str, keyword: str, recipient: str, issues: List[Dict[str, Any]]
) -> tuple[str, str]:
    """Render (html, text) bodies for a report listing ``issues`` in the given order."""
    context = {
        "repo_url": repo_url,
        "keyword": keyword,
        "recipient": recipient,
        "issues": [_issue_view(repo_url, issue) for issue in issues],
    }
    html = _env.get_template("report.html").render(**context)
    text = _env.get_template("report.txt").render(**context)
    return html, text


def render_no_relevant(repo_url: str, keyword: str, total_issues: int, threshold: int) -> str:
    return _env.get_template("no_relevant.html").render(
        repo_url=repo_url, keyword=keyword, total_issues=total_issues, threshold=threshold
    )
