# html_renderer.py
from __future__ import annotations
from typing import Iterable
import html

from lib.player.notices import Notice


def render_notices_html(notices: Iterable[Notice], title: str = "Player log") -> str:
    rows = []
    for n in notices:
        ts = n.at.strftime("%H:%M:%S.") + f"{n.at.microsecond // 1000:03d}"
        style = ' class="structured"' if n.structured else ""
        row = f"""
        <tr>
          <td>{html.escape(ts)}</td>
          <td{style}>{html.escape(n.message)}</td>
        </tr>
        """
        rows.append(row)

    rows_html = "\n".join(rows)
    page_title = html.escape(title)

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>{page_title}</title>
  <style>
    body {{
      font-family: system-ui, -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif;
      padding: 24px;
    }}
    table {{
      border-collapse: collapse;
      width: 100%;
    }}
    th, td {{
      border: 1px solid #ccc;
      padding: 6px 8px;
      font-size: 12px;
    }}
    th {{
      background: #f5f5f5;
    }}
    td.structured {{
      color: red;
    }}
  </style>
</head>
<body>
  <h1>{page_title}</h1>
  <table>
    <thead>
      <tr>
        <th>Time</th>
        <th>Message</th>
      </tr>
    </thead>
    <tbody id="log_table_body">
      {rows_html}
    </tbody>
  </table>
</body>
</html>
"""
