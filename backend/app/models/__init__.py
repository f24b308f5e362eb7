from app.models.base import Base
from app.models.job_artifact import JobArtifact
from app.models.job_log import JobLog
from app.models.provisioning_job import ProvisioningJob
from app.models.tenant_plan import TenantPlan

__all__ = ["Base", "JobArtifact", "JobLog", "ProvisioningJob", "TenantPlan"]
