from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class PublishEvent(BaseModel):
    """
    Body of a "construct published" notification.

    Fields are optional at this level so that a payload with a missing package name
    still parses; the branch resolver decides whether the event is usable.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", str_strip_whitespace=True)

    package_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("packageName", "package_name", "name")
    )
    version: Optional[str] = None
    source_timestamp: Optional[Union[str, int, float]] = Field(
        default=None, validation_alias=AliasChoices("sourceTimestamp", "source_timestamp", "timestamp")
    )


class InboundNotification(BaseModel):
    """A parsed PublishEvent plus whatever the transport told us about it."""

    event: PublishEvent
    message_id: Optional[str] = None
    topic_arn: Optional[str] = None
