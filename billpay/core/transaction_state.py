"""State pattern for the purchase lifecycle.

Each ``TransactionState`` subclass encodes which transitions are valid from
that state and provides an ``on_enter`` hook for side-effects (logging)
that should fire when a transaction enters that state.

Usage::

    state = TransactionStateMachine.get_state(txn.status)
    state.validate_transition(txn.transaction_code, target)   # raises InvalidTransition
    new_state = TransactionStateMachine.get_state(target)
    new_state.on_enter(txn)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from billpay.exceptions import InvalidTransition
from billpay.models.transaction import Transaction, TransactionStatus

logger = logging.getLogger(__name__)


class TransactionState(ABC):
    """Base class for transaction states."""

    #: Terminal for customer-facing purposes
    terminal: bool = False

    @abstractmethod
    def allowed_transitions(self) -> set[TransactionStatus]:
        """Return the set of statuses this state can transition to."""
        ...

    def can_transition_to(self, target: TransactionStatus | str) -> bool:
        """Check whether transitioning to *target* is permitted."""
        return TransactionStatus(target) in self.allowed_transitions()

    def validate_transition(self, code: str, target: TransactionStatus | str) -> None:
        """Raise ``InvalidTransition`` if the transition is not allowed."""
        if not self.can_transition_to(target):
            raise InvalidTransition(
                code,
                self.status_name,
                TransactionStatus(target).value,
                {s.value for s in self.allowed_transitions()},
            )

    @abstractmethod
    def on_enter(self, txn: Transaction) -> None:
        """Side-effects to execute when a transaction enters this state."""
        ...

    @property
    @abstractmethod
    def status_name(self) -> str:
        """The string name of this state (matches ``TransactionStatus.value``)."""
        ...


class PendingState(TransactionState):
    """Created, awaiting payment proof and operator approval."""

    @property
    def status_name(self) -> str:
        return TransactionStatus.PENDING.value

    def allowed_transitions(self) -> set[TransactionStatus]:
        return {TransactionStatus.PROCESSING, TransactionStatus.REJECTED}

    def on_enter(self, txn: Transaction) -> None:
        pass  # Initial state


class ProcessingState(TransactionState):
    """Approved; settlement dispatched or awaiting manual follow-up."""

    @property
    def status_name(self) -> str:
        return TransactionStatus.PROCESSING.value

    def allowed_transitions(self) -> set[TransactionStatus]:
        return {
            TransactionStatus.SUCCESS,
            TransactionStatus.FAILED,
            TransactionStatus.REJECTED,
        }

    def on_enter(self, txn: Transaction) -> None:
        logger.info("Transaction %s processing (ref=%s)", txn.transaction_code, txn.indotel_ref_id)


class SuccessState(TransactionState):
    """Terminal: the provider confirmed the purchase."""

    terminal = True

    @property
    def status_name(self) -> str:
        return TransactionStatus.SUCCESS.value

    def allowed_transitions(self) -> set[TransactionStatus]:
        return set()  # Terminal

    def on_enter(self, txn: Transaction) -> None:
        logger.info(
            "Transaction %s settled, gateway ref %s", txn.transaction_code, txn.indotel_ref_id
        )


class FailedState(TransactionState):
    """Provider rejected the settlement.

    Terminal for the customer, but an operator may push it back to
    ``processing`` to retry the settlement.
    """

    terminal = True

    @property
    def status_name(self) -> str:
        return TransactionStatus.FAILED.value

    def allowed_transitions(self) -> set[TransactionStatus]:
        return {TransactionStatus.PROCESSING}

    def on_enter(self, txn: Transaction) -> None:
        logger.warning(
            "Transaction %s failed at gateway: %s", txn.transaction_code, txn.gateway_message
        )


class RejectedState(TransactionState):
    """Terminal: rejected by an operator. No further gateway calls."""

    terminal = True

    @property
    def status_name(self) -> str:
        return TransactionStatus.REJECTED.value

    def allowed_transitions(self) -> set[TransactionStatus]:
        return set()  # Terminal

    def on_enter(self, txn: Transaction) -> None:
        logger.info("Transaction %s rejected", txn.transaction_code)


class TransactionStateMachine:
    """Registry that maps ``TransactionStatus`` values to their ``TransactionState``."""

    _states: dict[str, TransactionState] = {
        TransactionStatus.PENDING.value: PendingState(),
        TransactionStatus.PROCESSING.value: ProcessingState(),
        TransactionStatus.SUCCESS.value: SuccessState(),
        TransactionStatus.FAILED.value: FailedState(),
        TransactionStatus.REJECTED.value: RejectedState(),
    }

    @classmethod
    def get_state(cls, status: str | TransactionStatus) -> TransactionState:
        """Return the ``TransactionState`` for the given status value.

        Raises:
            ValueError: If *status* is not a recognised transaction status.
        """
        key = status.value if isinstance(status, TransactionStatus) else status
        state = cls._states.get(key)
        if state is None:
            raise ValueError(f"Unknown transaction status: '{key}'")
        return state
