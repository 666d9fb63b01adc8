"""
Web tools.

- web_search: searches the web through the Tavily API over httpx
- browser_use: fetches a page over httpx and extracts its readable text
  with BeautifulSoup

Configuration problems and HTTP failures are reported to the model as an
{"error": true, ...} result instead of failing the call, so the model can
answer without them.
"""

import json
from typing import Any

import httpx
import structlog
from bs4 import BeautifulSoup

from toolsmith.tools.base import Tool, ToolContext

logger = structlog.get_logger(__name__)

TAVILY_API_URL = "https://api.tavily.com/search"
DEFAULT_TIMEOUT_SECONDS = 30.0
BROWSE_TIMEOUT_SECONDS = 15.0
SUMMARY_MAX_CHARS = 4000
FULL_MAX_CHARS = 16000
TRUNCATED_MARKER = "\n\n[Content truncated]"
BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; Toolsmith/1.0)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}
BOILERPLATE_TAGS = ["script", "style", "noscript", "header", "footer", "nav", "aside", "form"]


class WebSearchTool(Tool):
    """
    Search the web for current information.

    Arguments:
        query (str): Search query (required)
        max_results (int): Max results to return (default 5)

    Returns:
        JSON {query, results: [{title, url, snippet, score}]}
    """

    @property
    def name(self) -> str:
        return "web_search"

    @property
    def description(self) -> str:
        return (
            "Search the web for current information. Use when the user asks about recent "
            "events, facts you are unsure about, or anything that benefits from live data."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
                "max_results": {
                    "type": "number",
                    "description": "Max results to return (default 5)",
                },
            },
            "required": ["query"],
        }

    def execute(self, args: dict[str, Any], context: ToolContext) -> str:
        query = args["query"]
        if not context.tavily_api_key:
            return json.dumps({
                "error": True,
                "message": "Web search is not configured. TAVILY_API_KEY is not set.",
            })

        payload = {
            "api_key": context.tavily_api_key,
            "query": query,
            "max_results": int(args.get("max_results") or 5),
            "search_depth": "basic",
            "include_answer": False,
        }
        try:
            if context.http_client is not None:
                response = context.http_client.post(TAVILY_API_URL, json=payload)
            else:
                with httpx.Client(timeout=DEFAULT_TIMEOUT_SECONDS) as client:
                    response = client.post(TAVILY_API_URL, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("web_search.http_error", status=e.response.status_code)
            return json.dumps({
                "error": True,
                "message": f"Tavily API error: {e.response.status_code} {e.response.reason_phrase}",
            })
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("web_search.failed", error=str(e))
            return json.dumps({"error": True, "message": str(e)})

        results = data.get("results") or []
        return json.dumps({
            "query": query,
            "results": [
                {
                    "title": r.get("title"),
                    "url": r.get("url"),
                    "snippet": r.get("content"),
                    "score": r.get("score"),
                }
                for r in results
            ],
        })


def _meta(soup: BeautifulSoup, *names: str) -> str | None:
    for name in names:
        tag = soup.find("meta", attrs={"name": name}) or soup.find("meta", attrs={"property": name})
        if tag and tag.get("content"):
            return str(tag["content"]).strip()
    return None


def extract_readable(html: str) -> dict[str, Any]:
    """
    Extract the readable parts of an HTML page.

    Boilerplate elements are dropped and the text of <article> (else <main>,
    else <body>) is kept, one block per line.

    Returns:
        {title, byline, excerpt, content}; content is "" when nothing is readable
    """
    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else None
    byline = _meta(soup, "author", "article:author")
    excerpt = _meta(soup, "description", "og:description")

    for tag in soup(BOILERPLATE_TAGS):
        tag.decompose()
    root = soup.find("article") or soup.find("main") or soup.body or soup
    lines = [line.strip() for line in root.get_text(separator="\n").splitlines()]
    return {
        "title": title,
        "byline": byline,
        "excerpt": excerpt,
        "content": "\n".join(line for line in lines if line),
    }


class BrowserUseTool(Tool):
    """
    Read a web page.

    Arguments:
        url (str): Page to fetch (required)
        extract (str): "summary" (default, first 4000 characters) or "full"

    Returns:
        JSON {url, title, byline, excerpt, content}
    """

    @property
    def name(self) -> str:
        return "browser_use"

    @property
    def description(self) -> str:
        return (
            "Fetch a web page and read its main text. Use after web_search to read a result, "
            "or when the user shares a link."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "The URL to read"},
                "extract": {
                    "type": "string",
                    "enum": ["summary", "full"],
                    "description": "summary (default) returns the first part of the page",
                },
            },
            "required": ["url"],
        }

    def execute(self, args: dict[str, Any], context: ToolContext) -> str:
        url = args["url"]
        try:
            scheme = httpx.URL(url).scheme
        except httpx.InvalidURL as e:
            return json.dumps({"url": url, "error": True, "message": str(e)})
        if scheme not in ("http", "https"):
            return json.dumps({
                "url": url,
                "error": True,
                "message": "Only http and https URLs are supported.",
            })

        try:
            if context.http_client is not None:
                response = context.http_client.get(
                    url,
                    headers=BROWSER_HEADERS,
                    timeout=BROWSE_TIMEOUT_SECONDS,
                    follow_redirects=True,
                )
            else:
                with httpx.Client(timeout=BROWSE_TIMEOUT_SECONDS, follow_redirects=True) as client:
                    response = client.get(url, headers=BROWSER_HEADERS)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("browser_use.http_error", url=url, status=e.response.status_code)
            return json.dumps({
                "url": url,
                "error": True,
                "message": f"Failed to fetch: {e.response.status_code} {e.response.reason_phrase}",
            })
        except httpx.HTTPError as e:
            logger.warning("browser_use.failed", url=url, error=str(e))
            return json.dumps({"url": url, "error": True, "message": str(e) or type(e).__name__})

        page = extract_readable(response.text)
        if not page["content"]:
            return json.dumps({
                "url": url,
                "error": True,
                "message": "Could not extract readable content from the page.",
            })

        limit = FULL_MAX_CHARS if args.get("extract") == "full" else SUMMARY_MAX_CHARS
        if len(page["content"]) > limit:
            page["content"] = page["content"][:limit] + TRUNCATED_MARKER
        return json.dumps({"url": url, **page})
