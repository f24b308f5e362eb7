from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator
from pydantic.alias_generators import to_camel

from app.models.enums import EntityType, JobStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreationOptions(CamelModel):
    create_example_products: bool
    number_of_products: int | None = Field(default=None, ge=0, le=10)
    create_about_page: bool
    create_contact_page: bool
    create_legal_pages: bool
    create_blog_with_posts: bool
    number_of_blog_posts: int | None = Field(default=None, ge=0, le=5)
    setup_basic_nav: bool
    theme: str | None = None


class LegalInfo(CamelModel):
    legal_business_name: str = Field(min_length=1)
    business_address: str = Field(min_length=1)


class EntityRef(CamelModel):
    type: EntityType
    id: str = Field(min_length=1, max_length=128)


class JobRequestSpec(CamelModel):
    webhook_url: HttpUrl
    store_name: str = Field(min_length=3, max_length=120)
    business_email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    country_code: str | None = Field(default=None, min_length=2, max_length=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    brand_description: str = Field(min_length=1)
    target_audience: str = Field(min_length=1)
    brand_personality: str = Field(min_length=1)
    color_palette_suggestion: str | None = None
    product_type_description: str = Field(min_length=1)
    creation_options: CreationOptions
    legal_info: LegalInfo


class CreateJobRequest(JobRequestSpec):
    entity: EntityRef


class CreateJobResponse(CamelModel):
    job_id: str
    status: JobStatus


class AssignStoreRequest(CamelModel):
    store_domain: str = Field(min_length=1, max_length=255)
    external_shop_id: str = Field(min_length=1, max_length=64)
    storefront_password: str | None = Field(default=None, max_length=255)
    caller_base_url: HttpUrl | None = None

    @field_validator("store_domain")
    @classmethod
    def normalize_domain(cls, value: str) -> str:
        return value.strip().lower().removeprefix("https://").removeprefix("http://").rstrip("/")


class AssignStoreResponse(CamelModel):
    job_id: str
    status: JobStatus
    install_url: str


class EnqueueResponse(CamelModel):
    job_id: str
    status: JobStatus
    task_ref: str


class TaskPayload(CamelModel):
    job_id: str | None = None


class TaskResponse(CamelModel):
    job_id: str
    outcome: str
    status: JobStatus | None = None


class JobLogResponse(CamelModel):
    timestamp: datetime
    message: str


class JobResultResponse(CamelModel):
    created_store_url: str | None
    created_store_admin_url: str | None
    storefront_password: str | None


class JobResponse(CamelModel):
    id: str
    status: JobStatus
    entity: EntityRef
    store_name: str | None
    business_email: str | None
    store_domain: str | None
    external_shop_id: str | None
    install_url: str | None
    result: JobResultResponse | None
    last_error: str | None
    request_spec: dict
    created_at: datetime
    updated_at: datetime


class JobDetailResponse(JobResponse):
    logs: list[JobLogResponse]


class JobListResponse(CamelModel):
    jobs: list[JobResponse]


class DeleteJobResponse(CamelModel):
    job_id: str
    deleted: bool
    message: str
