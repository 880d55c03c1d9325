from __future__ import annotations

from typing import Any, Optional

import aiohttp
from aiohttp_socks import ProxyConnector

from .config import CrawlerHttpConfig, get_config

_DEFAULT_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class BaseCrawler:
    def __init__(self, crawler_name: str, http_config: Optional[CrawlerHttpConfig] = None) -> None:
        self._crawler_name = crawler_name
        if http_config is None:
            http_config = get_config().get_crawler_config(crawler_name)
        self._http_config: CrawlerHttpConfig = http_config

    def _headers(self, referer: Optional[str] = None) -> dict:
        ua = self._http_config.user_agent or _DEFAULT_UA
        headers: dict[str, str] = {
            "User-Agent": ua,
            "Accept": "application/json",
            "Accept-Language": "en-US,en;q=0.9",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }
        if referer:
            headers["Referer"] = referer
        return headers

    def _create_aiohttp_session(self, **kwargs: Any) -> aiohttp.ClientSession:
        kwargs.setdefault("trust_env", False)
        proxy_url = self._http_config.resolve_proxy("https")
        if proxy_url and proxy_url.startswith(("socks5://", "socks5h://")):
            kwargs["connector"] = ProxyConnector.from_url(proxy_url)
        return aiohttp.ClientSession(**kwargs)

    def _get_aiohttp_request_proxy(self, scheme: str = "https") -> Optional[str]:
        proxy_url = self._http_config.resolve_proxy(scheme)
        if proxy_url and proxy_url.startswith(("socks5://", "socks5h://")):
            # socks proxies are handled by the session connector
            return None
        return proxy_url
