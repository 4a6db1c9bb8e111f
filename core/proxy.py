"""
DevTools Proxy Page

Downloads the DevTools proxy page served at "/" and points it at the
DeviceScript dashboard.

@.architecture
Incoming: app.py (startup), config/settings.py --- {ProxySettings, HTTPClient}
Processing: fetch_proxy(), rewrite_proxy_html() --- {2 jobs: page_download, url_rewriting}
Outgoing: app.py ("/" route) --- {str rewritten HTML}
"""

from typing import Optional

from config.settings import ProxySettings
from monitoring import get_logger
from utils.http import HTTPClient, get_http_client

logger = get_logger(__name__)

UPSTREAM_DASHBOARD = "https://microsoft.github.io/jacdac-docs/dashboard"
UPSTREAM_TITLE = "Jacdac DevTools"
UPSTREAM_FAVICON = "https://microsoft.github.io/jacdac-docs/favicon.svg"


def rewrite_proxy_html(body: str, dashboard_url: str, title: str, favicon_url: str) -> str:
    """
    Rewrite the upstream proxy page.

    Every dashboard URL is replaced; the title and favicon only on their
    first occurrence.
    """
    body = body.replace(UPSTREAM_DASHBOARD, dashboard_url)
    body = body.replace(UPSTREAM_TITLE, title, 1)
    return body.replace(UPSTREAM_FAVICON, favicon_url, 1)


async def fetch_proxy(settings: ProxySettings, client: Optional[HTTPClient] = None) -> str:
    """
    Download and rewrite the proxy page.

    Args:
        settings: Proxy settings (source URLs and rewrite targets)
        client: HTTP client (global client if None)

    Returns:
        Rewritten HTML

    Raises:
        httpx.HTTPError: If the download fails
    """
    client = client or get_http_client()
    url = settings.source_url
    logger.debug(f"fetch devtools proxy at {url}")

    body = await client.get_text(url)
    return rewrite_proxy_html(
        body,
        dashboard_url=settings.dashboard_url,
        title=settings.title,
        favicon_url=settings.favicon_url,
    )
