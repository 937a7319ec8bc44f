from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class BranchRequest(BaseModel):
    """Body of a manual POST /branch call; same fields as a publish notification."""

    model_config = ConfigDict(populate_by_name=True)

    package_name: str = Field(alias="packageName")
    version: str
    source_timestamp: Optional[Union[str, int, float]] = Field(default=None, alias="sourceTimestamp")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
