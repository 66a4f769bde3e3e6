"""Web fetch tool - plain HTTP(S) requests with HTML reduced to text."""

import html
import re
from urllib.parse import urlparse

import requests

from ..event_bus import get_event_bus, DEBUG
from ..host import HostEnvironment
from ..limits import get_limit
from ..llm.base import ToolDefinition

_BODY_METHODS = {"POST", "PUT", "PATCH"}
_ALLOWED_METHODS = {"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD"}

WEB_FETCH = ToolDefinition(
    name="web_fetch",
    description=(
        "Fetch content from a URL. Returns the response body as text. "
        "Useful for reading web pages, APIs, documentation, and other HTTP resources. "
        "The URL must be a fully-formed valid URL (e.g. https://example.com)."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "The URL to fetch content from"},
            "method": {
                "type": "string",
                "description": 'HTTP method (default: "GET")',
                "enum": sorted(_ALLOWED_METHODS),
            },
            "headers": {"type": "object", "description": "Optional HTTP headers as key-value pairs"},
            "body": {"type": "string", "description": "Optional request body (for POST/PUT/PATCH)"},
        },
        "required": ["url"],
    },
)

_SCRIPT_RE = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_BLOCK_CLOSE_RE = re.compile(r"</(p|div|h[1-6]|li|tr|blockquote|pre)>", re.IGNORECASE)
_BLOCK_OPEN_RE = re.compile(r"(?=<(?:p|div|h[1-6]|li|tr|blockquote|pre)[\s>])", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")


def html_to_text(markup: str) -> str:
    """Strip tags, decode entities and collapse whitespace."""
    text = _SCRIPT_RE.sub("", markup)
    text = _STYLE_RE.sub("", text)
    text = _BR_RE.sub("\n", text)
    text = _BLOCK_CLOSE_RE.sub("\n", text)
    text = _BLOCK_OPEN_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def execute_web_fetch(tool_input: dict, host: HostEnvironment) -> str:
    url = str(tool_input.get("url", "")).strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"Unsupported protocol: {parsed.scheme or '(none)'} (only http/https allowed)")
    if not parsed.netloc:
        raise ValueError(f"Invalid URL: {url}")

    method = str(tool_input.get("method") or "GET").upper()
    if method not in _ALLOWED_METHODS:
        raise ValueError(f"Unsupported method: {method}")
    headers = tool_input.get("headers") if isinstance(tool_input.get("headers"), dict) else None
    body = tool_input.get("body") if method in _BODY_METHODS else None

    get_event_bus().emit(DEBUG, agent="web_fetch", msg=f"[HTTP] {method} {url}")
    resp = requests.request(
        method, url,
        headers=headers,
        data=body,
        timeout=get_limit("tool.web_fetch_timeout_s"),
    )
    content_type = resp.headers.get("content-type", "")
    raw = resp.text

    content = html_to_text(raw) if "text/html" in content_type else raw
    max_chars = get_limit("tool.web_fetch_max_chars")
    if len(content) > max_chars:
        content = content[:max_chars] + f"\n\n[... truncated, response was {len(raw)} characters]"

    return f"HTTP {resp.status_code} {resp.reason}\nContent-Type: {content_type}\nURL: {url}\n\n{content}"
