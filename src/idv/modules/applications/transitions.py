"""
Application State Machine

The single table of permitted transitions. Every mutating operation asks this
module three questions, in order:

1. May this principal's role invoke the action at all? (``authorize_actor``)
2. Does a customer own the record they are acting on? (``authorize_ownership``)
3. Is the action legal from the record's current status? (``resolve_transition``)

Role and ownership failures raise ForbiddenError; status failures raise
IllegalTransitionError carrying the current status.
"""

import enum
from dataclasses import dataclass

from idv.core.auth import Principal, PrincipalRole

from .exceptions import ForbiddenError, IllegalTransitionError, ValidationError
from .models import Application, ApplicationStatus, AuditAction


class ApplicationAction(str, enum.Enum):
    """Actions a principal can request against an application."""

    SUBMIT = "SUBMIT"
    RESUBMIT = "RESUBMIT"
    CANCEL = "CANCEL"
    APPROVE = "APPROVE"
    REJECT = "REJECT"


CUSTOMER_ROLES = frozenset({PrincipalRole.CUSTOMER})
SUBMITTER_ROLES = frozenset({PrincipalRole.CUSTOMER, PrincipalRole.ANONYMOUS})
REVIEWER_ROLES = frozenset({PrincipalRole.AUDITOR, PrincipalRole.ADMIN})


@dataclass(frozen=True)
class Transition:
    """One row of the transition table."""

    from_status: ApplicationStatus | None
    action: ApplicationAction
    to_status: ApplicationStatus
    audit_action: AuditAction
    requires_remarks: bool = False


# (current status, action) -> transition. SUBMIT has no current status.
TRANSITIONS: dict[tuple[ApplicationStatus | None, ApplicationAction], Transition] = {
    (None, ApplicationAction.SUBMIT): Transition(
        None, ApplicationAction.SUBMIT, ApplicationStatus.PENDING, AuditAction.SUBMIT
    ),
    (ApplicationStatus.PENDING, ApplicationAction.CANCEL): Transition(
        ApplicationStatus.PENDING,
        ApplicationAction.CANCEL,
        ApplicationStatus.CANCELLED,
        AuditAction.CANCEL,
    ),
    (ApplicationStatus.REJECTED, ApplicationAction.RESUBMIT): Transition(
        ApplicationStatus.REJECTED,
        ApplicationAction.RESUBMIT,
        ApplicationStatus.PENDING,
        AuditAction.RESUBMIT,
    ),
    (ApplicationStatus.PENDING, ApplicationAction.APPROVE): Transition(
        ApplicationStatus.PENDING,
        ApplicationAction.APPROVE,
        ApplicationStatus.APPROVED,
        AuditAction.APPROVED,
    ),
    (ApplicationStatus.PENDING, ApplicationAction.REJECT): Transition(
        ApplicationStatus.PENDING,
        ApplicationAction.REJECT,
        ApplicationStatus.REJECTED,
        AuditAction.REJECTED,
        requires_remarks=True,
    ),
}

# Roles permitted to invoke each action
ACTION_ROLES: dict[ApplicationAction, frozenset[PrincipalRole]] = {
    ApplicationAction.SUBMIT: SUBMITTER_ROLES,
    ApplicationAction.RESUBMIT: CUSTOMER_ROLES,
    ApplicationAction.CANCEL: CUSTOMER_ROLES,
    ApplicationAction.APPROVE: REVIEWER_ROLES,
    ApplicationAction.REJECT: REVIEWER_ROLES,
}

# Actions restricted to the record's owner
OWNER_ACTIONS = frozenset({ApplicationAction.RESUBMIT, ApplicationAction.CANCEL})


def authorize_actor(action: ApplicationAction, principal: Principal) -> None:
    """
    Raise ForbiddenError unless the principal's role may invoke ``action``.
    """
    if principal.role not in ACTION_ROLES[action]:
        raise ForbiddenError(
            f"Role '{principal.role.value}' is not permitted to {action.value.lower()} applications."
        )


def is_owner(principal: Principal, application: Application) -> bool:
    """True when the principal submitted the application. Ownerless records have no owner."""
    return (
        principal.id is not None
        and application.owner_id is not None
        and application.owner_id == principal.id
    )


def authorize_ownership(principal: Principal, application: Application) -> None:
    """
    Raise ForbiddenError unless the principal owns the application.
    """
    if not is_owner(principal, application):
        raise ForbiddenError("You can only act on your own applications.")


def resolve_transition(
    current_status: ApplicationStatus | None,
    action: ApplicationAction,
) -> Transition:
    """
    Look up the transition for ``action`` from ``current_status``.

    Raises:
        IllegalTransitionError: If the pair is not in the table
    """
    transition = TRANSITIONS.get((current_status, action))
    if transition is None:
        raise IllegalTransitionError(current_status, action.value)
    return transition


def require_remarks(transition: Transition, remarks: str | None) -> str | None:
    """
    Enforce the remarks requirement of a transition.

    Returns:
        The stripped remarks, or None when blank and not required

    Raises:
        ValidationError: If the transition requires remarks and none were given
    """
    cleaned = remarks.strip() if remarks else ""
    if transition.requires_remarks and not cleaned:
        raise ValidationError(
            f"Remarks are required to {transition.action.value.lower()} an application."
        )
    return cleaned or None


def allowed_actions(status: ApplicationStatus) -> list[ApplicationAction]:
    """Actions that are legal from ``status``, in table order."""
    return [action for (from_status, action) in TRANSITIONS if from_status == status]


__all__ = [
    "ACTION_ROLES",
    "ApplicationAction",
    "TRANSITIONS",
    "Transition",
    "allowed_actions",
    "authorize_actor",
    "authorize_ownership",
    "is_owner",
    "require_remarks",
    "resolve_transition",
]
