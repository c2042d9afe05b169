"""
TenantContext model carried explicitly through every pipeline call.
"""

import uuid

from pydantic import BaseModel, Field, field_validator

from incentive.utils.validation import validate_identifier


class TenantContext(BaseModel):
    """
    Explicit tenant scope for one request.

    Attributes:
        tenant_id: Tenant every read and write is scoped to
        actor: User or service performing the request (used by lifecycle audit)
        request_id: Correlation id for logs
    """

    tenant_id: str
    actor: str | None = None
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)

    class Config:
        frozen = True

    @field_validator("tenant_id")
    @classmethod
    def validate_tenant_id(cls, v: str) -> str:
        return validate_identifier(v, "tenant_id")

    def log_fields(self) -> dict[str, str]:
        """Fields added to every log record emitted under this context."""
        fields = {"tenant_id": self.tenant_id, "request_id": self.request_id}
        if self.actor:
            fields["actor"] = self.actor
        return fields
