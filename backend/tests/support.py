from datetime import datetime, timedelta, timezone
import hashlib
import hmac

import jwt
from pydantic.alias_generators import to_camel

from app.core.errors import TransientExternalError
from app.services.populator import PopulationResult, slugify

ADMIN_SECRET = "admin-token-secret-used-only-in-tests-0123456789"
TASK_SECRET = "task-token-secret-used-only-in-tests-0123456789"
TASK_SERVICE_ACCOUNT = "tasks@orchestrator.iam.gserviceaccount.com"
CLIENT_SECRET = "shpss_test_secret"


def sample_request_spec(**overrides) -> dict:
    spec = {
        "webhook_url": "https://hooks.example.com/storefront",
        "store_name": "Acme Candles",
        "business_email": "owner@acme.test",
        "country_code": "DE",
        "currency": "EUR",
        "brand_description": "Hand-poured soy candles.",
        "target_audience": "Gift shoppers",
        "brand_personality": "Warm and calm",
        "color_palette_suggestion": "amber, cream",
        "product_type_description": "Scented candle",
        "creation_options": {
            "create_example_products": True,
            "number_of_products": 2,
            "create_about_page": True,
            "create_contact_page": True,
            "create_legal_pages": True,
            "create_blog_with_posts": True,
            "number_of_blog_posts": 1,
            "setup_basic_nav": True,
            "theme": None,
        },
        "legal_info": {"legal_business_name": "Acme Candles GmbH", "business_address": "Hauptstr. 1, Berlin"},
    }
    spec.update(overrides)
    return spec


def make_token(secret: str, **claims) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": "user-1", "iat": now, "exp": now + timedelta(minutes=5)}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def make_task_token(**claims) -> str:
    base = {
        "aud": "http://testserver/tasks/populate",
        "iss": "https://accounts.google.com",
        "email": TASK_SERVICE_ACCOUNT,
        "email_verified": True,
        "sub": "1234567890",
    }
    base.update(claims)
    return make_token(TASK_SECRET, **base)


class RecordingDispatcher:
    def __init__(self):
        self.dispatched: list[str] = []
        self.closed = False

    def dispatch(self, job_id: str) -> str:
        self.dispatched.append(job_id)
        return f"recorded:{job_id}"

    def shutdown(self) -> None:
        self.closed = True


class RecordingNotifier:
    def __init__(self):
        self.sent: list[tuple[str | None, dict]] = []

    def notify(self, url, payload) -> bool:
        self.sent.append((url, payload))
        return True


def camelize(value):
    if isinstance(value, dict):
        return {to_camel(key): camelize(item) for key, item in value.items()}
    return value


class FakePopulator:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[str] = []

    def populate(self, job, access_token, progress):
        self.calls.append(access_token)
        progress.log("Fake population ran.")
        if self.error is not None:
            raise self.error
        return PopulationResult(
            created_store_url=f"https://{job.store_domain}",
            created_store_admin_url=f"https://{job.store_domain}/admin",
        )


class FakeStoreClient:
    def __init__(self, fail_on: str | None = None):
        self.calls: list[tuple] = []
        self.fail_on = fail_on
        self.closed = 0
        self._next_id = 100

    def _record(self, name, *args) -> int:
        if name == self.fail_on:
            self.fail_on = None
            raise TransientExternalError(f"{name} unavailable")
        self.calls.append((name, *args))
        self._next_id += 1
        return self._next_id

    def create_page(self, title, body_html):
        page_id = self._record("create_page", title, body_html)
        return {"id": page_id, "title": title, "handle": slugify(title).replace("_", "-")}

    def create_product(self, title, body_html, tags):
        return {"id": self._record("create_product", title), "title": title}

    def list_blogs(self):
        self.calls.append(("list_blogs",))
        return []

    def create_blog(self, title):
        return {"id": self._record("create_blog", title), "title": title}

    def create_article(self, blog_id, title, body_html, tags):
        return {"id": self._record("create_article", blog_id, title), "title": title}

    def main_theme(self):
        return {"id": 5, "role": "main"}

    def put_theme_asset(self, theme_id, key, value):
        self._record("put_theme_asset", theme_id, key, value)
        return {"key": key}

    def main_menu(self):
        return {"id": 9, "handle": "main-menu", "title": "Main menu"}

    def update_menu(self, menu, links):
        self._record("update_menu", tuple(link["url"] for link in links))
        return {"id": menu["id"], "links": links}

    def close(self):
        self.closed += 1


def signed_callback_params(handoff, job_id, shop="acme.myshopify.com", code="auth-code") -> dict:
    params = {"code": code, "shop": shop, "state": handoff.encode_state(job_id), "timestamp": "1700000000"}
    message = "&".join(f"{key}={params[key]}" for key in sorted(params))
    params["hmac"] = hmac.new(handoff.client_secret.encode(), message.encode(), hashlib.sha256).hexdigest()
    return params
