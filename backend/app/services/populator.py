"""Storefront population: the side-effecting half of a provisioning job.

Each platform object is created through :meth:`PopulationProgress.ensure`,
which records it in the job's artifact ledger under a stable key. A
redelivered task walks the same steps, finds the keys and skips the calls,
so queue redelivery never duplicates storefront content.
"""

from collections.abc import Callable
from dataclasses import dataclass
import logging
import re
from typing import Any, Protocol

from app.core.config import Settings
from app.core.errors import JobNotFound
from app.models.provisioning_job import ProvisioningJob
from app.services.content import ContentGenerator, GeneratedContent, GenerationInput
from app.services.job_repository import JobRepository
from app.services.shopify import ShopifyAdminClient

logger = logging.getLogger(__name__)

PALETTE_ASSET_KEY = "snippets/brand-palette.liquid"


@dataclass(frozen=True)
class PopulationResult:
    created_store_url: str
    created_store_admin_url: str


class PopulationProgress:
    def __init__(self, repository: JobRepository, job_id):
        self.repository = repository
        self.job_id = job_id

    def log(self, message: str) -> None:
        self.repository.append_log(self.job_id, message)

    def ensure(self, key: str, create: Callable[[], dict]) -> dict:
        existing = self.repository.get_artifact(self.job_id, key)
        if existing is not None:
            return existing.payload
        created = create()
        external_id = created.get("id")
        recorded = self.repository.record_artifact(
            self.job_id, key, str(external_id) if external_id is not None else None, created
        )
        if recorded:
            return created

        existing = self.repository.get_artifact(self.job_id, key)
        if existing is None:
            raise JobNotFound(f"Job {self.job_id} not found")
        logger.warning(
            "Artifact %s for job %s was recorded concurrently; keeping the first (external id %s, discarded %s)",
            key,
            self.job_id,
            existing.external_id,
            external_id,
        )
        return existing.payload

    def has(self, key: str) -> bool:
        return self.repository.get_artifact(self.job_id, key) is not None

    def cached_content(self, job: ProvisioningJob) -> GeneratedContent | None:
        if not job.generated_content:
            return None
        return GeneratedContent.model_validate(job.generated_content)

    def save_content(self, content: GeneratedContent) -> None:
        self.repository.save_generated_content(self.job_id, content.model_dump(mode="json"))


class StorePopulator(Protocol):
    def populate(self, job: ProvisioningJob, access_token: str, progress: PopulationProgress) -> PopulationResult: ...


ClientFactory = Callable[[str, str], Any]


class ShopifyStorePopulator:
    def __init__(
        self,
        content_generator: ContentGenerator,
        client_factory: ClientFactory,
        default_number_of_products: int = 3,
        default_number_of_blog_posts: int = 2,
    ):
        self.content_generator = content_generator
        self.client_factory = client_factory
        self.default_number_of_products = default_number_of_products
        self.default_number_of_blog_posts = default_number_of_blog_posts

    def populate(self, job: ProvisioningJob, access_token: str, progress: PopulationProgress) -> PopulationResult:
        spec = job.request_spec
        options = spec["creation_options"]

        content = progress.cached_content(job)
        if content is None:
            progress.log("Starting content population. Generating content...")
            content = self.content_generator.generate(self._generation_input(spec), job.entity_id)
            progress.save_content(content)
            progress.log("Content generated. Creating pages...")

        client = self.client_factory(job.store_domain, access_token)
        try:
            pages = self._create_pages(client, progress, spec, options, content)
            self._create_products(client, progress, options, content)
            self._create_blog_posts(client, progress, options, content)
            self._apply_palette(client, progress, spec)
            self._setup_navigation(client, progress, options, pages)
        finally:
            close = getattr(client, "close", None)
            if close is not None:
                close()

        return PopulationResult(
            created_store_url=f"https://{job.store_domain}",
            created_store_admin_url=f"https://{job.store_domain}/admin",
        )

    def _generation_input(self, spec: dict) -> GenerationInput:
        options = dict(spec["creation_options"])
        if options.get("number_of_products") is None:
            options["number_of_products"] = self.default_number_of_products
        if options.get("number_of_blog_posts") is None:
            options["number_of_blog_posts"] = self.default_number_of_blog_posts
        return GenerationInput(
            store_name=spec["store_name"],
            brand_description=spec["brand_description"],
            target_audience=spec["target_audience"],
            brand_personality=spec["brand_personality"],
            color_palette_suggestion=spec.get("color_palette_suggestion"),
            product_type_description=spec["product_type_description"],
            creation_options=options,
        )

    def _create_pages(self, client, progress, spec, options, content) -> dict[str, dict]:
        pages: dict[str, dict] = {}
        if content.about_page and options.get("create_about_page"):
            page = content.about_page
            pages["about"] = progress.ensure("page:about", lambda: client.create_page(page.title, page.html_content))
        if content.contact_page and options.get("create_contact_page"):
            page = content.contact_page
            pages["contact"] = progress.ensure(
                "page:contact", lambda: client.create_page(page.title, fill_legal_placeholders(page.html_content, spec))
            )
        if content.legal_pages and options.get("create_legal_pages"):
            for page in content.legal_pages:
                body = fill_legal_placeholders(page.html_content, spec)
                key = f"page:legal:{slugify(page.title)}"
                pages[key] = progress.ensure(key, lambda page=page, body=body: client.create_page(page.title, body))
        return pages

    def _create_products(self, client, progress, options, content) -> None:
        if not (content.example_products and options.get("create_example_products")):
            return
        if not progress.has(f"product:{len(content.example_products) - 1}"):
            progress.log("Pages created. Creating products...")
        for index, product in enumerate(content.example_products):
            progress.ensure(
                f"product:{index}",
                lambda product=product: client.create_product(product.title, product.description_html, product.tags),
            )

    def _create_blog_posts(self, client, progress, options, content) -> None:
        if not (content.blog_posts and options.get("create_blog_with_posts")):
            return
        if not progress.has(f"article:{len(content.blog_posts) - 1}"):
            progress.log("Products created. Creating blog posts...")

        def resolve_blog() -> dict:
            blogs = client.list_blogs()
            return blogs[0] if blogs else client.create_blog("News")

        blog = progress.ensure("blog", resolve_blog)
        for index, post in enumerate(content.blog_posts):
            progress.ensure(
                f"article:{index}",
                lambda post=post: client.create_article(str(blog["id"]), post.title, post.content_html, post.tags),
            )

    def _apply_palette(self, client, progress, spec) -> None:
        palette = spec.get("color_palette_suggestion")
        if not palette or progress.has("theme:palette"):
            return
        theme = client.main_theme()
        if theme is None:
            progress.log("No published theme found. Skipping brand palette.")
            return
        value = "{% comment %}Brand palette: " + palette + "{% endcomment %}\n"
        progress.ensure("theme:palette", lambda: client.put_theme_asset(str(theme["id"]), PALETTE_ASSET_KEY, value))

    def _setup_navigation(self, client, progress, options, pages) -> None:
        if not options.get("setup_basic_nav") or progress.has("navigation:main-menu"):
            return
        progress.log("Content created. Configuring navigation menu...")
        menu = client.main_menu()
        if menu is None:
            progress.log("Main menu not found. Skipping navigation setup.")
            return
        links = [
            {"title": pages[name]["title"], "url": f"/pages/{pages[name]['handle']}"}
            for name in ("about", "contact")
            if name in pages
        ]
        progress.ensure("navigation:main-menu", lambda: client.update_menu(menu, links))


_PLACEHOLDERS = {
    "business name": lambda spec: spec.get("legal_info", {}).get("legal_business_name") or spec["store_name"],
    "address": lambda spec: spec.get("legal_info", {}).get("business_address") or "Address not provided",
    "contact email": lambda spec: spec.get("business_email") or "Email not provided",
}


def fill_legal_placeholders(html: str, spec: dict) -> str:
    for placeholder, resolve in _PLACEHOLDERS.items():
        html = re.sub(rf"\[{placeholder}\]", lambda _m: resolve(spec), html, flags=re.IGNORECASE)
    return html


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_")


def build_store_populator(settings: Settings, content_generator: ContentGenerator) -> ShopifyStorePopulator:
    def client_factory(store_domain: str, access_token: str) -> ShopifyAdminClient:
        return ShopifyAdminClient(
            store_domain,
            access_token,
            api_version=settings.shopify_api_version,
            max_attempts=settings.platform_max_attempts,
            backoff_seconds=settings.platform_backoff_seconds,
            timeout_seconds=settings.platform_timeout_seconds,
        )

    return ShopifyStorePopulator(
        content_generator,
        client_factory,
        default_number_of_products=settings.default_number_of_products,
        default_number_of_blog_posts=settings.default_number_of_blog_posts,
    )
