import time
from typing import Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from app.core.errors import FatalJobError, TransientExternalError
from app.services.retry import send_with_retries


class PageContent(BaseModel):
    title: str
    html_content: str = Field(alias="htmlContent")

    model_config = ConfigDict(populate_by_name=True)


class ProductContent(BaseModel):
    title: str
    description_html: str = Field(alias="descriptionHtml")
    tags: list[str] = Field(default_factory=list)
    image_prompt: str | None = Field(default=None, alias="imagePrompt")

    model_config = ConfigDict(populate_by_name=True)


class BlogPostContent(BaseModel):
    title: str
    content_html: str = Field(alias="contentHtml")
    tags: list[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class GeneratedContent(BaseModel):
    about_page: PageContent | None = Field(default=None, alias="aboutPage")
    contact_page: PageContent | None = Field(default=None, alias="contactPage")
    legal_pages: list[PageContent] = Field(default_factory=list, alias="legalPages")
    example_products: list[ProductContent] = Field(default_factory=list, alias="exampleProducts")
    blog_posts: list[BlogPostContent] = Field(default_factory=list, alias="blogPosts")

    model_config = ConfigDict(populate_by_name=True)


class GenerationInput(BaseModel):
    store_name: str
    brand_description: str
    target_audience: str
    brand_personality: str
    color_palette_suggestion: str | None = None
    product_type_description: str
    creation_options: dict


class ContentGenerator(Protocol):
    def generate(self, data: GenerationInput, entity_id: str) -> GeneratedContent: ...


class HttpContentGenerator:
    """Delegates generation to an external content service returning GeneratedContent JSON."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 120.0,
        http_client: httpx.Client | None = None,
        max_attempts: int = 4,
        backoff_seconds: float = 1.0,
        sleep=time.sleep,
    ):
        self.url = url
        self.http_client = http_client or httpx.Client(timeout=timeout_seconds)
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def generate(self, data: GenerationInput, entity_id: str) -> GeneratedContent:
        payload = {"input": data.model_dump(), "entityId": entity_id}
        try:
            response = send_with_retries(
                lambda: self.http_client.post(self.url, json=payload),
                "Content generation",
                max_attempts=self.max_attempts,
                backoff_seconds=self.backoff_seconds,
                sleep=self._sleep,
            )
        except httpx.HTTPError as exc:
            raise TransientExternalError(f"Content generation request failed: {exc}") from exc

        if response.status_code >= 500:
            raise TransientExternalError(f"Content generation failed: status={response.status_code}")
        if response.status_code >= 400:
            raise FatalJobError(f"Content generation rejected the request: status={response.status_code}")

        try:
            return GeneratedContent.model_validate(response.json())
        except (ValueError, PydanticValidationError) as exc:
            raise FatalJobError(f"Content generation returned an invalid payload: {exc}") from exc


class TemplateContentGenerator:
    """Offline generator producing plain placeholder copy from the request fields."""

    def generate(self, data: GenerationInput, entity_id: str) -> GeneratedContent:
        options = data.creation_options
        name = data.store_name
        content = GeneratedContent()

        if options.get("create_about_page"):
            content.about_page = PageContent(
                title=f"About {name}",
                html_content=f"<h1>About {name}</h1><p>{data.brand_description}</p>",
            )
        if options.get("create_contact_page"):
            content.contact_page = PageContent(
                title="Contact",
                html_content="<h1>Contact us</h1><p>Write to us at [Contact Email].</p>",
            )
        if options.get("create_legal_pages"):
            content.legal_pages = [
                PageContent(
                    title="Privacy Policy",
                    html_content="<h1>Privacy Policy</h1><p>[Business Name], [Address], [Contact Email].</p>",
                ),
                PageContent(
                    title="Terms of Service",
                    html_content="<h1>Terms of Service</h1><p>These terms are offered by [Business Name].</p>",
                ),
            ]
        if options.get("create_example_products"):
            content.example_products = [
                ProductContent(
                    title=f"{data.product_type_description} #{index + 1}",
                    description_html=f"<p>Made for {data.target_audience}.</p>",
                    tags=["example"],
                )
                for index in range(options.get("number_of_products") or 0)
            ]
        if options.get("create_blog_with_posts"):
            content.blog_posts = [
                BlogPostContent(
                    title=f"{name} journal, part {index + 1}",
                    content_html=f"<p>{data.brand_personality}</p>",
                    tags=["news"],
                )
                for index in range(options.get("number_of_blog_posts") or 0)
            ]
        return content
