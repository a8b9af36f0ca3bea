"""Tagged bulk action payloads, one variant per action kind."""

from __future__ import annotations

import enum
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    StringConstraints,
    TypeAdapter,
    model_validator,
)


class PriceOperation(str, enum.Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    SET = "set"


class PriceValueType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class _Action(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AdjustPriceAction(_Action):
    kind: Literal["adjust_price"] = "adjust_price"
    operation: PriceOperation
    value_type: PriceValueType
    value: Decimal = Field(..., ge=0, max_digits=12, decimal_places=4)

    @property
    def change_type(self) -> str:
        """Ledger classification: percentage, fixed or an absolute set."""
        if self.value_type is PriceValueType.PERCENTAGE:
            return "percentage"
        if self.operation is PriceOperation.SET:
            return "set"
        return "fixed"


class AssignCategoryAction(_Action):
    kind: Literal["assign_category"] = "assign_category"
    category: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=128)]


class PublishAction(_Action):
    kind: Literal["publish"] = "publish"


class UnpublishAction(_Action):
    kind: Literal["unpublish"] = "unpublish"


class ArchiveAction(_Action):
    kind: Literal["archive"] = "archive"


class DeleteAction(_Action):
    kind: Literal["delete"] = "delete"


class DuplicateAction(_Action):
    kind: Literal["duplicate"] = "duplicate"


class StockUpdateAction(_Action):
    kind: Literal["stock_update"] = "stock_update"
    target: Literal["product", "variant"] = "product"
    quantity: NonNegativeInt | None = None
    # Per-item quantities (e.g. resolved from a SKU-keyed CSV) override ``quantity``
    quantities: dict[int, NonNegativeInt] = Field(default_factory=dict)
    reason: str = "Bulk update"
    notes: str = ""

    @model_validator(mode="after")
    def _require_quantity(self) -> "StockUpdateAction":
        if self.quantity is None and not self.quantities:
            raise ValueError("quantity or quantities is required")
        return self

    def quantity_for(self, item_id: int) -> int | None:
        return self.quantities.get(item_id, self.quantity)


BulkAction = Annotated[
    Union[
        AdjustPriceAction,
        AssignCategoryAction,
        PublishAction,
        UnpublishAction,
        ArchiveAction,
        DeleteAction,
        DuplicateAction,
        StockUpdateAction,
    ],
    Field(discriminator="kind"),
]

bulk_action_adapter: TypeAdapter[BulkAction] = TypeAdapter(BulkAction)
