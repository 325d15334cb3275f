"""Payroll run, payslip, ad hoc and declaration state machines."""

from __future__ import annotations

from enum import Enum

from payslip_engine.calculators.types import AdHocStatus, DeclarationStatus, PayslipStatus
from payslip_engine.errors import InvalidTransitionError


class PayrollRunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    LOCKED = "locked"


class PayrollRunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - draft → processing
    - processing → completed | failed
    - failed → processing (retry)
    - processing → processing (explicit resume of an interrupted run)
    - completed → locked (terminal)
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrollRunStatus.DRAFT: [PayrollRunStatus.PROCESSING],
        PayrollRunStatus.PROCESSING: [
            PayrollRunStatus.PROCESSING,
            PayrollRunStatus.COMPLETED,
            PayrollRunStatus.FAILED,
        ],
        PayrollRunStatus.FAILED: [PayrollRunStatus.PROCESSING],
        PayrollRunStatus.COMPLETED: [PayrollRunStatus.LOCKED],
        PayrollRunStatus.LOCKED: [],  # Terminal state
    }

    # Statuses a processor may claim; a run left in processing needs an explicit resume
    PROCESSABLE = {
        PayrollRunStatus.DRAFT,
        PayrollRunStatus.FAILED,
    }
    RESUMABLE = PROCESSABLE | {PayrollRunStatus.PROCESSING}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str, reason: str | None = None) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status, reason)

    @classmethod
    def can_process(cls, status: str, resume: bool = False) -> bool:
        return status in (cls.RESUMABLE if resume else cls.PROCESSABLE)

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return not cls.VALID_TRANSITIONS.get(status)


class PayslipStateMachine:
    """Payslips only move forward: generated → approved → sent → downloaded."""

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayslipStatus.GENERATED: [PayslipStatus.APPROVED],
        PayslipStatus.APPROVED: [PayslipStatus.SENT],
        PayslipStatus.SENT: [PayslipStatus.DOWNLOADED],
        PayslipStatus.DOWNLOADED: [],
    }

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        if to_status not in cls.VALID_TRANSITIONS.get(from_status, []):
            raise InvalidTransitionError(from_status, to_status)


class AdHocStateMachine:
    """Lifecycle shared by variable pay, arrears and reimbursements.

    Submission is optional: a draft may be approved directly. ``processed``
    is reached only through payslip generation.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        AdHocStatus.DRAFT: [
            AdHocStatus.SUBMITTED,
            AdHocStatus.APPROVED,
            AdHocStatus.REJECTED,
            AdHocStatus.CANCELLED,
        ],
        AdHocStatus.SUBMITTED: [
            AdHocStatus.APPROVED,
            AdHocStatus.REJECTED,
            AdHocStatus.CANCELLED,
        ],
        AdHocStatus.APPROVED: [AdHocStatus.PROCESSED, AdHocStatus.CANCELLED],
        AdHocStatus.PROCESSED: [],
        AdHocStatus.REJECTED: [],
        AdHocStatus.CANCELLED: [],
    }

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        if to_status not in cls.VALID_TRANSITIONS.get(from_status, []):
            reason = "processed items cannot be changed" if from_status == AdHocStatus.PROCESSED else None
            raise InvalidTransitionError(from_status, to_status, reason)


class TaxDeclarationStateMachine:
    """draft → submitted → verified | partial | rejected.

    Editing the declared amounts sends any declaration back to draft.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        DeclarationStatus.DRAFT: [DeclarationStatus.SUBMITTED],
        DeclarationStatus.SUBMITTED: [
            DeclarationStatus.VERIFIED,
            DeclarationStatus.PARTIAL,
            DeclarationStatus.REJECTED,
        ],
        DeclarationStatus.VERIFIED: [],
        DeclarationStatus.PARTIAL: [],
        DeclarationStatus.REJECTED: [],
    }

    # Statuses whose verified amount flows into payslips
    EFFECTIVE = {DeclarationStatus.VERIFIED, DeclarationStatus.PARTIAL}

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        if to_status not in cls.VALID_TRANSITIONS.get(from_status, []):
            raise InvalidTransitionError(from_status, to_status)
