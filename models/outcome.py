from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class OutcomeStatus(str, Enum):
    SUCCESS = "Success"
    ALREADY_SATISFIED = "AlreadySatisfied"
    FAILED = "Failed"


class InvocationState(str, Enum):
    START = "Start"
    CREDENTIAL_FETCHED = "CredentialFetched"
    CLONED = "Cloned"
    BRANCH_CHECKED = "BranchChecked"
    BRANCH_CREATED_AND_PUSHED = "BranchCreatedAndPushed"
    ALREADY_SATISFIED = "AlreadySatisfied"
    CLEANED = "Cleaned"


class Outcome(BaseModel):
    """Result of handling one notification."""

    status: OutcomeStatus
    reason: Optional[str] = None
    detail: str = ""
    retryable: bool = False

    branch: Optional[str] = None
    base_ref: Optional[str] = None
    package_name: Optional[str] = None
    version: Optional[str] = None
    message_id: Optional[str] = None

    # States visited, in order.
    states: List[InvocationState] = []

    @property
    def ok(self) -> bool:
        return self.status != OutcomeStatus.FAILED
