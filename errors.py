# errors.py
#
# Failure taxonomy for one invocation. Every component raises one of these; the
# handler turns them into an Outcome with the matching reason.


class BrancherError(Exception):
    reason = "InternalError"
    retryable = True


class InvalidEvent(BrancherError):
    """The notification cannot be turned into a branch. Redelivery will not help."""

    reason = "InvalidEvent"
    retryable = False


class CredentialUnavailable(BrancherError):
    reason = "CredentialUnavailable"


class GitOperationFailed(BrancherError):
    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class CloneFailed(GitOperationFailed):
    reason = "CloneFailed"


class RemoteQueryFailed(GitOperationFailed):
    reason = "RemoteQueryFailed"


class BranchCreateFailed(GitOperationFailed):
    reason = "BranchCreateFailed"


class PushRejected(GitOperationFailed):
    """
    The push did not update the remote.

    `conflict` is True when the remote refused the ref update, which usually means
    another invocation created the branch first.
    """

    reason = "PushRejected"

    def __init__(self, message: str, stderr: str = "", conflict: bool = False):
        super().__init__(message, stderr)
        self.conflict = conflict


class InvocationTimeout(BrancherError):
    reason = "Timeout"


class RedeliveryRequested(Exception):
    """Raised from the Lambda entry point so the platform retries the delivery."""
