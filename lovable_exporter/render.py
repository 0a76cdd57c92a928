"""Serialize an ordered transcript as Markdown, HTML or JSON."""

import datetime as dt
import html
import json

from .markdown import collapse_blank_lines, html_to_markdown
from .store import USER

TITLE = "Lovable Chat Export"
ROLE_LABELS = {"user": "👤 You", "assistant": "🤖 Lovable"}

EXPORT_FORMATS = {
    "md": {"extension": "md", "media_type": "text/markdown"},
    "html": {"extension": "html", "media_type": "text/html"},
    "json": {"extension": "json", "media_type": "application/json"},
}
FORMAT_ALIASES = {"markdown": "md", "htm": "html"}

STYLE_CSS = """\
    *, *::before, *::after { box-sizing: border-box; }
    body { font-family: system-ui, sans-serif; max-width: 800px; margin: 0 auto; padding: 2rem 1rem; background: #0f1117; color: #e2e8f0; line-height: 1.6; }
    h1 { font-size: 1.5rem; font-weight: 600; margin-bottom: .25rem; }
    .meta { color: #94a3b8; font-size: .875rem; margin-bottom: 2rem; }
    .message { margin-bottom: 1.5rem; border-radius: 12px; overflow: hidden; border: 1px solid #1e293b; }
    .message header { display: flex; gap: .75rem; align-items: center; padding: .6rem 1rem; background: #1e293b; font-size: .8rem; }
    .role { font-weight: 600; }
    .ts { color: #64748b; margin-left: auto; }
    .message.user header { background: #1a2744; }
    .message.user .role { color: #60a5fa; }
    .message.assistant header { background: #1a2730; }
    .message.assistant .role { color: #34d399; }
    .body { padding: 1rem; font-size: .95rem; }
    .body p:first-child { margin-top: 0; }
    .body p:last-child { margin-bottom: 0; }
    code { background: #1e293b; padding: .15em .4em; border-radius: 4px; font-size: .85em; }
    pre { background: #1e293b; padding: 1rem; border-radius: 8px; overflow: auto; }
    pre code { background: none; padding: 0; }
"""


def normalize_format(fmt: str) -> str:
    key = (fmt or "").lower().lstrip(".")
    key = FORMAT_ALIASES.get(key, key)
    if key not in EXPORT_FORMATS:
        raise ValueError(f"Unknown export format: {fmt!r} (expected one of {', '.join(EXPORT_FORMATS)})")
    return key


def export_filename(name: str, fmt: str, now: dt.datetime) -> str:
    ext = EXPORT_FORMATS[normalize_format(fmt)]["extension"]
    return f"{name}-{now.date().isoformat()}.{ext}"


def escape_text(text: str) -> str:
    return html.escape(text or "", quote=False)


def role_label(role: str) -> str:
    return ROLE_LABELS["user" if role == USER else "assistant"]


def _local_time(now: dt.datetime) -> str:
    return now.strftime("%Y-%m-%d %H:%M:%S")


def render_markdown(records, url: str, now: dt.datetime) -> str:
    lines = [
        f"# {TITLE}",
        f"> URL: {url}",
        f"> Exported: {_local_time(now)}",
        f"> Messages: {len(records)}",
        "",
        "---",
        "",
    ]
    for record in records:
        heading = f"## {role_label(record.role)}"
        if record.timestamp_text:
            heading += f" — {record.timestamp_text}"
        lines.append(heading)
        lines.append("")
        if record.content_markup:
            lines.append(html_to_markdown(record.content_markup))
        else:
            lines.append(record.content_text)
        lines.extend(["", "---", ""])
    return collapse_blank_lines("\n".join(lines))


def _render_article(record) -> str:
    role = "user" if record.role == USER else "assistant"
    body = record.content_markup or escape_text(record.content_text)
    return f"""
      <article class="message {role}">
        <header>
          <span class="role">{role_label(record.role)}</span>
          <span class="ts">{escape_text(record.timestamp_text)}</span>
        </header>
        <div class="body">{body}</div>
      </article>"""


def render_html(records, url: str, now: dt.datetime) -> str:
    articles = "\n".join(_render_article(r) for r in records)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{TITLE} — {now.date().isoformat()}</title>
  <style>
{STYLE_CSS}  </style>
</head>
<body>
  <h1>💬 {TITLE}</h1>
  <p class="meta">
    <strong>URL:</strong> {html.escape(url)}<br>
    <strong>Exported:</strong> {_local_time(now)}<br>
    <strong>Messages:</strong> {len(records)}
  </p>
  {articles}
</body>
</html>"""


def render_json(records, url: str, now: dt.datetime) -> str:
    payload = {
        "exportedAt": now.isoformat(),
        "url": url,
        "messageCount": len(records),
        "messages": [r.to_dict() for r in records],
    }
    return json.dumps(payload, ensure_ascii=False, indent=2)


RENDERERS = {"md": render_markdown, "html": render_html, "json": render_json}


def render(fmt: str, records, url: str, now: dt.datetime = None) -> str:
    if now is None:
        now = dt.datetime.now().astimezone()
    return RENDERERS[normalize_format(fmt)](list(records), url, now)
