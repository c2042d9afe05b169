"""
CommittedDataRow model representing one tenant-scoped fact row.
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class CommittedDataRow(BaseModel):
    """
    A fact row committed by import/classification.

    Rows are immutable once committed: the period detector and the
    calculation engine only read them. Repair replaces a row rather than
    editing it in place.

    Attributes:
        id: Row identifier
        tenant_id: Owning tenant
        entity_id: Resolved entity (None for store/group level rows or before resolution)
        period_id: Resolved period (None before resolution)
        data_type: Sheet or category label the row came from
        row_data: Arbitrary column -> value map from the source sheet
        metadata: Import provenance (file, tab, content unit, field bindings)
        import_batch_id: Import that produced this row
        created_at: Commit timestamp
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    entity_id: str | None = None
    period_id: str | None = None
    data_type: str
    row_data: dict[str, Any]
    metadata: dict[str, Any] = Field(default_factory=dict)
    import_batch_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "5b0c7c0e-8d7a-4b7e-9f6f-5d2f3f1f4a11",
                "tenant_id": "acme",
                "entity_id": "ent-1001",
                "period_id": "per-2024-01",
                "data_type": "monthly_sales",
                "row_data": {"employee_id": "1001", "sales_amount": 64250.0, "sales_goal": 70000},
                "metadata": {"source_file": "jan.xlsx", "tab": "Sales"},
            }
        }

    def get(self, field: str, default: Any = None) -> Any:
        """Read a field from row_data."""
        return self.row_data.get(field, default)
