"""HTML rendering for the listing and document pages."""

from __future__ import annotations

from datetime import datetime
from html import escape
from urllib.parse import quote

import markdown

from docrelay.types import DocumentEntry

# GitHub-flavoured enough: tables, fenced code, single newlines as <br>.
_MARKDOWN_EXTENSIONS = ["tables", "fenced_code", "nl2br", "sane_lists"]

_STYLE = """
  *, *::before, *::after { box-sizing: border-box; }
  :root { --bg: #fff; --fg: #1a1a1a; --fg-muted: #555; --link: #0969da;
          --border: #d0d7de; --code-bg: #f5f5f5; --block-bg: #f8f9fa; --max-w: 46rem; }
  @media (prefers-color-scheme: dark) {
    :root { --bg: #0d1117; --fg: #c9d1d9; --fg-muted: #8b949e; --link: #58a6ff;
            --border: #30363d; --code-bg: #161b22; --block-bg: #161b22; }
  }
  body { margin: 0; font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Helvetica,
         Arial, sans-serif; line-height: 1.6; color: var(--fg); background: var(--bg); }
  .container { max-width: var(--max-w); margin: 0 auto; padding: 2rem 1.25rem; }
  a { color: var(--link); text-decoration: none; }
  a:hover { text-decoration: underline; }
  .file-list { list-style: none; padding: 0; }
  .file-list li { padding: 0.6rem 0; border-bottom: 1px solid var(--border); display: flex;
                  justify-content: space-between; align-items: baseline; gap: 1rem; }
  .file-list .meta { color: var(--fg-muted); font-size: 0.85rem; white-space: nowrap; }
  .article img { max-width: 100%; height: auto; }
  .article pre { background: var(--code-bg); padding: 1rem; overflow-x: auto; border-radius: 6px; }
  .article code { background: var(--code-bg); padding: 0.15em 0.35em; border-radius: 4px; }
  .article pre code { background: none; padding: 0; }
  .article blockquote { margin: 1rem 0; padding: 0.25rem 1rem; border-left: 4px solid var(--border);
                        color: var(--fg-muted); background: var(--block-bg); }
  .article table { border-collapse: collapse; width: 100%; overflow-x: auto; display: block; }
  .article th, .article td { border: 1px solid var(--border); padding: 0.45rem 0.75rem; }
  .back { display: inline-block; margin-bottom: 1rem; }
  mjx-container { overflow-x: auto; overflow-y: hidden; }
"""

_HEAD_SCRIPTS = """
<script>
  window.MathJax = {
    tex: { inlineMath: [['$', '$']], displayMath: [['$$', '$$']] },
    options: { skipHtmlTags: ['script', 'noscript', 'style', 'textarea', 'pre', 'code'] },
  };
</script>
<script id="MathJax-script" async src="https://cdn.jsdelivr.net/npm/mathjax@3/es5/tex-chtml.js"></script>
<script src="https://hypothes.is/embed.js" async></script>
"""

_BACK_LINK = '<a class="back" href="/">&larr; Back</a>'


def layout(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n<head>\n<meta charset="utf-8">\n'
        '<meta name="viewport" content="width=device-width, initial-scale=1">\n'
        f"<title>{escape(title)}</title>\n<style>{_STYLE}</style>\n{_HEAD_SCRIPTS}</head>\n"
        f'<body>\n<div class="container">\n{body}\n</div>\n</body>\n</html>'
    )


def format_date(value: datetime) -> str:
    """Short date such as `Oct 9, 2026`."""
    return f"{value:%b} {value.day}, {value.year}"


def render_markdown(text: str) -> str:
    return markdown.markdown(text, extensions=_MARKDOWN_EXTENSIONS)


def render_listing(entries: list[DocumentEntry]) -> str:
    if not entries:
        body = "<h1>Documents</h1>\n<p>No markdown files found in <code>docs/</code>.</p>"
        return layout("Documents", body)

    items = "\n".join(
        f'<li><a href="/{quote(entry.slug, safe="")}">{escape(entry.name)}</a> '
        f'<span class="meta">{format_date(entry.mtime)}</span></li>'
        for entry in entries
    )
    body = f'<h1>Documents</h1>\n<ul class="file-list">\n{items}\n</ul>'
    return layout("Documents", body)


def render_document(slug: str, text: str) -> str:
    body = f'{_BACK_LINK}\n<article class="article">\n{render_markdown(text)}\n</article>'
    return layout(slug, body)


def render_not_found() -> str:
    return layout("Not Found", f"<h1>404</h1><p>File not found.</p>{_BACK_LINK}")
