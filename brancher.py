# brancher.py
#
# The notification handler: one publish event in, one Outcome out.

import logging
from contextlib import ExitStack
from typing import Any, Iterable, List, Optional

from branch_resolver import BranchResolver
from credentials import KEY_DIR_PREFIX, CredentialProvider, SecretsManagerSource
from errors import BrancherError, GitOperationFailed, PushRejected
from events import parse_notification
from git_operator import GitOperator
from models.branch_spec import BranchSpec
from models.outcome import InvocationState, Outcome, OutcomeStatus
from models.settings import BrancherSettings
from notifications import Notifications
from utils import Deadline
from workspace import WORKSPACE_PREFIX, RepositoryWorkspace, sweep_stale

logger = logging.getLogger(__name__)


class BranchingHandler:
    """
    Handles "construct published" notifications by making sure the matching branch
    exists on the target repository.

    Safe under at-least-once delivery: the branch name is a pure function of the event
    and the remote is checked before anything is pushed, so repeats end in
    AlreadySatisfied instead of duplicate work.
    """

    def __init__(
            self,
            settings: BrancherSettings,
            credentials: CredentialProvider,
            workspaces: RepositoryWorkspace,
            git: GitOperator,
            resolver: Optional[BranchResolver] = None,
            notifier=None,
    ):
        self.settings = settings
        self.credentials = credentials
        self.workspaces = workspaces
        self.git = git
        self.resolver = resolver or BranchResolver(settings.branch_prefix, settings.base_branch)
        self.notifier = notifier

    def handle(self, raw_event: Any, deadline: Optional[Deadline] = None) -> Outcome:
        """Process one notification. Never raises; every failure becomes a Failed outcome."""
        deadline = deadline or Deadline(self.settings.timeout_seconds)
        states = [InvocationState.START]
        context = {}

        try:
            notification = parse_notification(raw_event)
            context["message_id"] = notification.message_id
            spec = self.resolver.resolve(notification.event)
            context.update(package_name=spec.package_name, version=spec.version, branch=spec.name)
            logger.info(
                f"Handling {spec.package_name}@{spec.version} -> branch '{spec.name}' "
                f"(message {notification.message_id or 'n/a'})"
            )
            status, spec = self._ensure_branch(spec, deadline, states)
            context["base_ref"] = spec.base_ref
            outcome = Outcome(status=status, **context)
        except BrancherError as e:
            outcome = Outcome(
                status=OutcomeStatus.FAILED,
                reason=e.reason,
                detail=str(e),
                retryable=e.retryable,
                **context,
            )
        except Exception as e:
            logger.error(f"Unexpected error while handling notification: {e}", exc_info=True)
            outcome = Outcome(
                status=OutcomeStatus.FAILED,
                reason="InternalError",
                detail=f"{e.__class__.__name__}: {e}",
                retryable=True,
                **context,
            )

        # Resources were released when _ensure_branch's ExitStack closed.
        states.append(InvocationState.CLEANED)
        outcome.states = states
        self._report(outcome)
        return outcome

    def handle_batch(self, raw_events: Iterable[Any], deadline: Optional[Deadline] = None) -> List[Outcome]:
        """Handle each record on its own; one failure does not affect the others."""
        return [self.handle(raw_event, deadline) for raw_event in raw_events]

    def _ensure_branch(self, spec: BranchSpec, deadline: Deadline, states: List[InvocationState]):
        deadline.check("credential fetch")
        key = self.credentials.fetch()

        with ExitStack() as cleanup:
            key_path = cleanup.enter_context(self.credentials.key_file(key))
            states.append(InvocationState.CREDENTIAL_FETCHED)

            self._sweep_stale_directories()
            workspace = cleanup.enter_context(self.workspaces.scoped())

            checkout = self.git.clone(self.settings.target, key_path, workspace, deadline)
            if not spec.base_ref:
                spec = spec.with_base_ref(checkout.default_branch)
            states.append(InvocationState.CLONED)

            exists = self.git.branch_exists(checkout, spec)
            states.append(InvocationState.BRANCH_CHECKED)
            if exists:
                logger.info(f"Branch '{spec.name}' already exists on the remote. Nothing to do.")
                states.append(InvocationState.ALREADY_SATISFIED)
                return OutcomeStatus.ALREADY_SATISFIED, spec

            self.git.create_branch(checkout, spec)
            try:
                created = self.git.push(checkout, spec)
            except PushRejected as e:
                # Another invocation may have won the race; the end state is what matters.
                if not e.conflict or not self._exists_after_rejection(checkout, spec):
                    raise
                logger.info(f"Push of '{spec.name}' rejected but the branch now exists.")
                created = False

            if not created:
                states.append(InvocationState.ALREADY_SATISFIED)
                return OutcomeStatus.ALREADY_SATISFIED, spec

            states.append(InvocationState.BRANCH_CREATED_AND_PUSHED)
            return OutcomeStatus.SUCCESS, spec

    def _exists_after_rejection(self, checkout, spec: BranchSpec) -> bool:
        try:
            return self.git.branch_exists(checkout, spec)
        except GitOperationFailed as e:
            # Report the push as the failing step, not the follow-up query.
            logger.warning(f"Could not re-check '{spec.name}' after a rejected push: {e}")
            return False

    def _sweep_stale_directories(self):
        try:
            sweep_stale(
                self.settings.workspace_root,
                (WORKSPACE_PREFIX, KEY_DIR_PREFIX),
                self.settings.stale_workspace_seconds,
            )
        except OSError as e:
            logger.warning(f"Could not sweep stale workspaces: {e}")

    def _report(self, outcome: Outcome):
        subject = f"{outcome.package_name or '?'}@{outcome.version or '?'}"
        if outcome.status == OutcomeStatus.SUCCESS:
            logger.info(f"Success: created '{outcome.branch}' from '{outcome.base_ref}' for {subject}")
        elif outcome.status == OutcomeStatus.ALREADY_SATISFIED:
            logger.info(f"AlreadySatisfied: '{outcome.branch}' exists for {subject}")
        elif outcome.retryable:
            logger.error(f"Failed({outcome.reason}) for {subject}: {outcome.detail}")
        else:
            logger.warning(f"Failed({outcome.reason}), not retrying: {outcome.detail}")

        if self.notifier is not None:
            self.notifier.notify_branch_event(outcome)


def create_handler(settings: BrancherSettings, secret_source=None, runner=None, notifier=None) -> BranchingHandler:
    """Wire a handler from settings. Tests pass their own secret source and git runner."""
    source = secret_source or SecretsManagerSource(settings.secret_id, region_name=settings.aws_region)
    git_kwargs = {"runner": runner} if runner is not None else {}
    return BranchingHandler(
        settings=settings,
        credentials=CredentialProvider(source, workspace_root=settings.workspace_root),
        workspaces=RepositoryWorkspace(root=settings.workspace_root),
        git=GitOperator(
            git_binary=settings.git_binary,
            ssh_binary=settings.ssh_binary,
            strict_host_key_checking=settings.strict_host_key_checking,
            **git_kwargs,
        ),
        notifier=notifier if notifier is not None else Notifications(settings.notifications, settings.repository),
    )
