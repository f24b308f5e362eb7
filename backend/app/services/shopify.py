import time
from typing import Any

import httpx

from app.core.errors import FatalJobError
from app.services.retry import send_with_retries


class ShopifyAdminClient:
    def __init__(
        self,
        store_domain: str,
        access_token: str,
        api_version: str = "2025-04",
        max_attempts: int = 4,
        backoff_seconds: float = 1.0,
        timeout_seconds: float = 20.0,
        transport: httpx.BaseTransport | None = None,
        sleep=time.sleep,
    ):
        self.store_domain = store_domain
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._http = httpx.Client(
            base_url=f"https://{store_domain}/admin/api/{api_version}",
            headers={"X-Shopify-Access-Token": access_token, "Content-Type": "application/json"},
            timeout=timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ShopifyAdminClient":
        return self

    def __exit__(self, *_exc) -> None:
        self.close()

    def create_page(self, title: str, body_html: str) -> dict:
        return self._request("POST", "/pages.json", json={"page": {"title": title, "body_html": body_html}})["page"]

    def create_product(self, title: str, body_html: str, tags: list[str]) -> dict:
        payload = {"product": {"title": title, "body_html": body_html, "tags": ",".join(tags)}}
        return self._request("POST", "/products.json", json=payload)["product"]

    def list_blogs(self) -> list[dict]:
        return self._request("GET", "/blogs.json").get("blogs", [])

    def create_blog(self, title: str) -> dict:
        return self._request("POST", "/blogs.json", json={"blog": {"title": title}})["blog"]

    def create_article(self, blog_id: str, title: str, body_html: str, tags: list[str]) -> dict:
        payload = {"article": {"title": title, "body_html": body_html, "tags": ",".join(tags)}}
        return self._request("POST", f"/blogs/{blog_id}/articles.json", json=payload)["article"]

    def main_theme(self) -> dict | None:
        themes = self._request("GET", "/themes.json").get("themes", [])
        return next((theme for theme in themes if theme.get("role") == "main"), None)

    def put_theme_asset(self, theme_id: str, key: str, value: str) -> dict:
        payload = {"asset": {"key": key, "value": value}}
        return self._request("PUT", f"/themes/{theme_id}/assets.json", json=payload)["asset"]

    def main_menu(self) -> dict | None:
        menus = self._request("GET", "/navigation.json").get("navigation", [])
        return next((menu for menu in menus if menu.get("handle") == "main-menu"), None)

    def update_menu(self, menu: dict, links: list[dict]) -> dict:
        payload = {"navigation": {**menu, "links": links}}
        return self._request("PUT", f"/navigation/{menu['id']}.json", json=payload).get("navigation", {})

    def _request(self, method: str, path: str, json: Any = None) -> dict:
        response = send_with_retries(
            lambda: self._http.request(method, path, json=json),
            f"{method} {path} on {self.store_domain}",
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            sleep=self._sleep,
        )
        if response.status_code >= 400:
            raise FatalJobError(f"{method} {path} failed: status={response.status_code} body={response.text[:300]}")
        return response.json() if response.content else {}
