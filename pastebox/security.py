"""
Secure response building.

Every response leaves with nosniff, frame denial, a referrer policy and a
Content-Security-Policy. Pastes are served as their stored MIME type and
never rendered as HTML on the server; Markdown pastes requested by a browser
are embedded as escaped text in a fixed page and rendered client-side by a
sanitizing renderer loaded from one pinned origin.
"""
import base64
import hashlib
import html
import logging
from typing import Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

RENDERER_ORIGIN = "https://cdnjs.cloudflare.com"
MARKED_URL = f"{RENDERER_ORIGIN}/ajax/libs/marked/4.3.0/marked.min.js"
PURIFY_URL = f"{RENDERER_ORIGIN}/ajax/libs/dompurify/3.0.6/purify.min.js"
MARKDOWN_CSS_URL = f"{RENDERER_ORIGIN}/ajax/libs/github-markdown-css/5.2.0/github-markdown.min.css"

PAGE_STYLE = (
    ".markdown-body { box-sizing: border-box; min-width: 200px; max-width: 980px; margin: 0 auto; padding: 45px; }\n"
    "@media (max-width: 767px) { .markdown-body { padding: 15px; } }"
)
PAGE_SCRIPT = (
    "var source = document.getElementById('content').textContent;\n"
    "document.getElementById('view').innerHTML = DOMPurify.sanitize(marked.parse(source));"
)


def _csp_hash(source: str) -> str:
    digest = hashlib.sha256(source.encode("utf-8")).digest()
    return f"'sha256-{base64.b64encode(digest).decode('ascii')}'"


DEFAULT_CSP = "default-src 'none'; script-src 'none'; style-src 'none'; img-src 'self'"
HTML_CSP = (
    "default-src 'none'; "
    f"script-src {RENDERER_ORIGIN} {_csp_hash(PAGE_SCRIPT)}; "
    f"style-src {RENDERER_ORIGIN} {_csp_hash(PAGE_STYLE)}; "
    f"font-src {RENDERER_ORIGIN}; "
    "img-src *"
)

BASE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def security_headers(html_page: bool = False) -> Dict[str, str]:
    headers = dict(BASE_HEADERS)
    headers["Content-Security-Policy"] = HTML_CSP if html_page else DEFAULT_CSP
    return headers


def build_response(
    body: bytes,
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
    html_page: bool = False,
) -> Response:
    """
    Assemble an outbound response with the mandatory security headers.

    Content-Type must be supplied in `headers`; it is passed through verbatim
    so cached copies replay byte-for-byte.
    """
    merged = dict(headers or {})
    merged.update(security_headers(html_page))
    return Response(content=body, status_code=status_code, headers=merged)


def text_response(
    message: str,
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
) -> Response:
    """Plain-text response, one line, newline-terminated."""
    merged = {"Content-Type": "text/plain; charset=utf-8"}
    merged.update(headers or {})
    return build_response(f"{message}\n".encode("utf-8"), status_code, merged)


def render_markdown_page(title: str, text: str) -> str:
    """Embed Markdown source, escaped, into the client-side rendering page."""
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>{html.escape(title)}</title>
    <link rel="stylesheet" href="{MARKDOWN_CSS_URL}">
    <style>{PAGE_STYLE}</style>
</head>
<body class="markdown-body">
    <div id="content" hidden>{html.escape(text)}</div>
    <div id="view"></div>
    <script src="{MARKED_URL}"></script>
    <script src="{PURIFY_URL}"></script>
    <script>{PAGE_SCRIPT}</script>
</body>
</html>"""


def wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "")


def is_hotlink(request: Request) -> bool:
    """
    Detect a cross-site embed (img, script, fetch...) of a paste.

    Top-level navigation from another site is allowed; clients that do not
    send fetch metadata (curl, older browsers) are allowed.
    """
    site = request.headers.get("sec-fetch-site", "").lower()
    dest = request.headers.get("sec-fetch-dest", "").lower()
    if site == "cross-site" and dest and dest != "document":
        logger.info(f"Blocked hotlink to {request.url.path} (dest={dest})")
        return True
    return False


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Apply default-deny headers to responses the routes did not build (405, redirects)."""

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        for name, value in security_headers().items():
            if name not in response.headers:
                response.headers[name] = value
        return response
