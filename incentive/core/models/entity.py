"""
Entity model representing a compensated participant.
"""

import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field

# Row and roster fields naming the store an entity or a store-level row belongs to
STORE_FIELDS = ("store_id", "storeId", "store", "num_tienda", "No_Tienda", "Tienda")


class Entity(BaseModel):
    """
    A compensated participant (employee, agent or store).

    Attributes:
        id: Entity identifier
        tenant_id: Owning tenant
        external_id: Natural key used to match rows across sheets and periods
        display_name: Name shown in results and reconciliation
        role: Role used to pick the plan variant ("Optometrista Certificado", ...)
        store_id: Store or group the entity belongs to, for store-level rows
        status: "active" or "inactive"
        metadata: Remaining roster attributes
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    external_id: str = Field(..., min_length=1)
    display_name: str | None = None
    role: str | None = None
    store_id: str | None = None
    status: Literal["active", "inactive"] = "active"
    metadata: dict[str, Any] = Field(default_factory=dict)

    class Config:
        json_schema_extra = {
            "example": {
                "id": "ent-1001",
                "tenant_id": "acme",
                "external_id": "1001",
                "display_name": "Ana Lopez",
                "role": "Senior Rep",
                "store_id": "12",
                "status": "active",
                "metadata": {"region": "North"},
            }
        }


class RuleSetAssignment(BaseModel):
    """Links an entity to the rule set it is compensated under."""

    tenant_id: str
    rule_set_id: str
    entity_id: str
