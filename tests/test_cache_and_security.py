import base64
import hashlib

from starlette.requests import Request

from pastebox.cache import ResponseCache
from pastebox.database import InMemoryPipeline
from pastebox.security import (
    DEFAULT_CSP,
    HTML_CSP,
    PAGE_SCRIPT,
    build_response,
    is_hotlink,
    render_markdown_page,
    wants_html,
)


def make_request(path="/abc", method="GET", headers=None):
    raw = [(b"host", b"testserver")]
    raw += [(name.lower().encode(), value.encode()) for name, value in (headers or {}).items()]
    return Request({
        "type": "http",
        "method": method,
        "scheme": "http",
        "server": ("testserver", 80),
        "path": path,
        "query_string": b"",
        "headers": raw,
    })


# --- cache ---

def test_cache_store_then_lookup_replays_response():
    cache = ResponseCache()
    request = make_request()
    response = build_response(b"payload", headers={"Content-Type": "image/png", "X-Paste-Views": "1"})

    assert cache.lookup(request) is None
    assert cache.store(request, response, max_age=60)

    cached = cache.lookup(make_request())
    assert cached.body == b"payload"
    assert cached.status_code == 200
    assert cached.headers["content-type"] == "image/png"
    assert cached.headers["x-paste-views"] == "1"
    assert cached.headers["content-security-policy"] == DEFAULT_CSP


def test_cache_keys_vary_on_html_acceptance():
    cache = ResponseCache()
    cache.store(make_request(), build_response(b"raw", headers={"Content-Type": "text/plain"}), 60)
    assert cache.lookup(make_request(headers={"Accept": "text/html"})) is None
    assert cache.lookup(make_request(headers={"Accept": "*/*"})).body == b"raw"


def test_cache_skips_zero_max_age_and_disabled(monkeypatch):
    from pastebox.config import settings

    cache = ResponseCache()
    response = build_response(b"x", headers={"Content-Type": "text/plain"})
    assert not cache.store(make_request(), response, max_age=0)
    assert cache.lookup(make_request()) is None

    cache.store(make_request(), response, max_age=60)
    monkeypatch.setattr(settings, "CACHE_ENABLED", False)
    assert cache.lookup(make_request()) is None


def test_cache_invalidate_drops_all_variants():
    cache = ResponseCache()
    response = build_response(b"x", headers={"Content-Type": "text/plain"})
    cache.store(make_request(path="/n.md"), response, 60)
    cache.store(make_request(path="/n.md", headers={"Accept": "text/html"}), response, 60)

    assert cache.invalidate("http://testserver/n.md")
    assert cache.lookup(make_request(path="/n.md")) is None
    assert cache.lookup(make_request(path="/n.md", headers={"Accept": "text/html"})) is None


def test_cache_errors_are_swallowed(monkeypatch):
    class Broken:
        def __getattr__(self, name):
            raise ConnectionError("down")

    cache = ResponseCache()
    monkeypatch.setattr(cache.database, "redis", Broken())
    response = build_response(b"x", headers={"Content-Type": "text/plain"})
    assert cache.lookup(make_request()) is None
    assert cache.store(make_request(), response, 60) is False
    assert cache.invalidate("http://testserver/abc") is False


def test_cache_entry_expires_with_paste(memory_store):
    cache = ResponseCache()
    cache.store(make_request(), build_response(b"x", headers={"Content-Type": "text/plain"}), 60)
    assert "cache:raw:http://testserver/abc" in memory_store.ttl_timestamps


def test_cache_populate_failure_leaves_no_entry(memory_store, monkeypatch):
    def broken(self):
        self.reset()
        raise ConnectionError("down")

    monkeypatch.setattr(InMemoryPipeline, "execute", broken)
    cache = ResponseCache()
    response = build_response(b"x", headers={"Content-Type": "text/plain"})
    assert cache.store(make_request(), response, 60) is False
    assert memory_store.store == {}
    assert cache.lookup(make_request()) is None


# --- security ---

def test_build_response_headers():
    response = build_response(b"x", headers={"Content-Type": "text/plain"})
    assert response.headers["x-content-type-options"] == "nosniff"
    assert response.headers["x-frame-options"] == "DENY"
    assert response.headers["referrer-policy"] == "strict-origin-when-cross-origin"
    assert response.headers["content-security-policy"] == DEFAULT_CSP

    page = build_response(b"<html>", headers={"Content-Type": "text/html"}, html_page=True)
    assert page.headers["content-security-policy"] == HTML_CSP


def test_html_policy_pins_renderer_origin_and_inline_script():
    digest = base64.b64encode(hashlib.sha256(PAGE_SCRIPT.encode()).digest()).decode()
    assert f"'sha256-{digest}'" in HTML_CSP
    assert "script-src https://cdnjs.cloudflare.com" in HTML_CSP
    assert "img-src *" in HTML_CSP
    assert "unsafe-inline" not in HTML_CSP


def test_markdown_page_escapes_content():
    page = render_markdown_page("x.md", "# Hi\n<script>alert(1)</script>")
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in page
    assert "<script>alert(1)" not in page
    assert PAGE_SCRIPT in page


def test_wants_html():
    assert wants_html(make_request(headers={"Accept": "text/html,application/xhtml+xml"}))
    assert not wants_html(make_request(headers={"Accept": "*/*"}))
    assert not wants_html(make_request())


def test_hotlink_detection():
    assert is_hotlink(make_request(headers={"Sec-Fetch-Site": "cross-site", "Sec-Fetch-Dest": "image"}))
    assert is_hotlink(make_request(headers={"Sec-Fetch-Site": "cross-site", "Sec-Fetch-Dest": "empty"}))
    assert not is_hotlink(make_request(headers={"Sec-Fetch-Site": "cross-site", "Sec-Fetch-Dest": "document"}))
    assert not is_hotlink(make_request(headers={"Sec-Fetch-Site": "same-origin", "Sec-Fetch-Dest": "image"}))
    assert not is_hotlink(make_request())
