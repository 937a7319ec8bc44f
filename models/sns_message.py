from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SnsMessage(BaseModel):
    """
    SNS message envelope.

    The same shape arrives in the "Sns" member of a Lambda event record and as the
    body of an HTTPS subscription delivery.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: str = Field(alias="Type")
    message_id: Optional[str] = Field(default=None, alias="MessageId")
    topic_arn: Optional[str] = Field(default=None, alias="TopicArn")
    subject: Optional[str] = Field(default=None, alias="Subject")
    message: str = Field(default="", alias="Message")
    timestamp: Optional[str] = Field(default=None, alias="Timestamp")
    subscribe_url: Optional[str] = Field(default=None, alias="SubscribeURL")
