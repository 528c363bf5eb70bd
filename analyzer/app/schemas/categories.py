from typing import Tuple

from pydantic import BaseModel, ConfigDict, Field


class Category(BaseModel):
    """
    Immutable risk category descriptor.

    Categories form a fixed, ordered catalog known at startup.
    """

    name: str = Field(..., min_length=1, description="Unique key")
    priority: int = Field(
        ...,
        ge=1,
        description="Lower priorities are analyzed first",
    )
    focus_areas: Tuple[str, ...] = Field(
        default_factory=tuple,
        description="Ordered hints passed to the classifier",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @property
    def slug(self) -> str:
        return "-".join(
            part for part in self.name.lower().replace("&", " ").split() if part
        )
