"""Graph node names, routing directives and human decision vocabularies."""

from dataclasses import dataclass, field
from enum import StrEnum

from property_sales.state import StateUpdate, WorkflowStage


class Node(StrEnum):
    INPUT_VALIDATION = "input_validation"
    MARKETING = "marketing"
    LEAD_MANAGEMENT = "lead_management"
    NEGOTIATION = "negotiation"
    LEGAL = "legal"
    CLOSURE = "closure"
    HUMAN = "human"

    @property
    def stage(self) -> WorkflowStage:
        if self is Node.HUMAN:
            raise ValueError("human node has no stage of its own")
        return WorkflowStage(self.value)


STAGE_NODES: tuple[Node, ...] = tuple(n for n in Node if n is not Node.HUMAN)


@dataclass(frozen=True)
class Update:
    """Plain state update. The node's static edge decides what runs next."""

    values: StateUpdate = field(default_factory=dict)


@dataclass(frozen=True)
class Redirect:
    """State update plus an explicit destination node (or END)."""

    values: StateUpdate
    goto: str


Directive = Update | Redirect


class InputDecision(StrEnum):
    PROCEED = "PROCEED"
    STAY = "STAY"


class LeadBrokerDecision(StrEnum):
    PROCEED = "PROCEED"
    WAIT = "WAIT"
    DISCUSS = "DISCUSS"


class NegotiationDecision(StrEnum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    MODIFY = "MODIFY"
    DISCUSS = "DISCUSS"


class LegalDecision(StrEnum):
    APPROVE = "APPROVE"
    REVISE = "REVISE"
    DISCUSS = "DISCUSS"


class ClosureDecision(StrEnum):
    COMPLETE = "COMPLETE"
    PENDING = "PENDING"
    DISCUSS = "DISCUSS"
