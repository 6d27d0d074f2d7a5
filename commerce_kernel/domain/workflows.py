"""
Workflow definitions (``commerce_kernel.domain.workflows``).

Responsibility
--------------
Pure value objects for the order, payment-claim and conversation state
machines, plus the three workflow instances the services enforce.  Services
ask a Workflow whether a transition is legal; they never hard-code the
tables themselves.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``models/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions, except the administrative
  ``resolved -> closed`` step of the conversation workflow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from commerce_kernel.domain.values import (
    ClaimStatus,
    ConversationStatus,
    OrderStatus,
)


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``moves_stock`` marks transitions that commit stock (into paid) or
    release it (into cancelled); OrderLifecycle acts on it.
    """
    from_state: str
    to_state: str
    action: str
    moves_stock: bool = False


@dataclass(frozen=True)
class Workflow:
    """A state machine definition.

    Guarantees: ``initial_state`` is a member of ``states`` and every
    transition endpoint is a member of ``states`` (checked at construction).
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()
    _index: dict[tuple[str, str], Transition] = field(
        default_factory=dict, init=False, repr=False, compare=False,
    )

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                "is not a declared state"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} references "
                    f"unknown state ({t.from_state!r} -> {t.to_state!r})"
                )
            self._index[(t.from_state, t.to_state)] = t

    def find(self, from_state: str, to_state: str) -> Transition | None:
        """Return the transition for the pair, or None if illegal."""
        return self._index.get((_key(from_state), _key(to_state)))

    def is_terminal(self, state: str) -> bool:
        return _key(state) in self.terminal_states

    def targets_from(self, state: str) -> frozenset[str]:
        return frozenset(
            t.to_state for t in self.transitions if t.from_state == _key(state)
        )


def _key(state: str | Enum) -> str:
    return state.value if isinstance(state, Enum) else state


def _s(value: Enum) -> str:
    return value.value


# -----------------------------------------------------------------------------
# Order lifecycle
# -----------------------------------------------------------------------------

_O = OrderStatus

ORDER_WORKFLOW = Workflow(
    name="order_lifecycle",
    description="Order from creation through payment, shipping and delivery",
    initial_state=_s(_O.PENDING),
    states=tuple(_s(s) for s in _O),
    transitions=(
        Transition(_s(_O.PENDING), _s(_O.PAID), "confirm_payment", moves_stock=True),
        Transition(_s(_O.PAID), _s(_O.SHIPPED), "ship"),
        Transition(_s(_O.SHIPPED), _s(_O.DELIVERED), "deliver"),
        Transition(_s(_O.PENDING), _s(_O.PROBLEM), "report_problem"),
        Transition(_s(_O.PAID), _s(_O.PROBLEM), "report_problem"),
        Transition(_s(_O.SHIPPED), _s(_O.PROBLEM), "report_problem"),
        Transition(_s(_O.PENDING), _s(_O.CANCELLED), "cancel"),
        Transition(_s(_O.PAID), _s(_O.CANCELLED), "cancel", moves_stock=True),
        Transition(_s(_O.SHIPPED), _s(_O.CANCELLED), "cancel", moves_stock=True),
        Transition(_s(_O.PROBLEM), _s(_O.CANCELLED), "cancel", moves_stock=True),
    ),
    terminal_states=(_s(_O.DELIVERED), _s(_O.CANCELLED)),
)

# Orders whose stock has been committed by a confirmed payment
STOCK_COMMITTED_STATES: frozenset[str] = frozenset(
    {_s(_O.PAID), _s(_O.SHIPPED), _s(_O.DELIVERED)}
)

# -----------------------------------------------------------------------------
# Payment claim
# -----------------------------------------------------------------------------

_C = ClaimStatus

CLAIM_WORKFLOW = Workflow(
    name="payment_claim",
    description="Buyer claims payment, operator confirms or rejects",
    initial_state=_s(_C.UNCLAIMED),
    states=tuple(_s(s) for s in _C),
    transitions=(
        Transition(_s(_C.UNCLAIMED), _s(_C.CLAIM_PENDING), "claim"),
        # rejection returns the order to a re-claimable state
        Transition(_s(_C.CLAIM_PENDING), _s(_C.UNCLAIMED), "reject"),
        Transition(_s(_C.CLAIM_PENDING), _s(_C.CONFIRMED), "confirm"),
        # operator-initiated confirmation without a prior claim
        Transition(_s(_C.UNCLAIMED), _s(_C.CONFIRMED), "confirm"),
    ),
    terminal_states=(_s(_C.CONFIRMED),),
)

# -----------------------------------------------------------------------------
# Conversation
# -----------------------------------------------------------------------------

_V = ConversationStatus

CONVERSATION_WORKFLOW = Workflow(
    name="conversation",
    description="Hand-off between the automated agent and a human operator",
    initial_state=_s(_V.AUTOMATED),
    states=tuple(_s(s) for s in _V),
    transitions=(
        Transition(_s(_V.AUTOMATED), _s(_V.ESCALATED), "escalate"),
        Transition(_s(_V.AUTOMATED), _s(_V.RESOLVED), "resolve"),
        Transition(_s(_V.AUTOMATED), _s(_V.CLOSED), "close"),
        Transition(_s(_V.ESCALATED), _s(_V.RESOLVED), "resolve"),
        Transition(_s(_V.ESCALATED), _s(_V.CLOSED), "close"),
        Transition(_s(_V.RESOLVED), _s(_V.CLOSED), "close"),
    ),
    terminal_states=(_s(_V.RESOLVED), _s(_V.CLOSED)),
)

ACTIVE_CONVERSATION_STATES: frozenset[str] = frozenset(
    {_s(_V.AUTOMATED), _s(_V.ESCALATED)}
)
