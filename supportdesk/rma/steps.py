"""
The fixed RMA checklist.

Every RMA carries the same nine steps. Most are plain checkboxes; the first
one assigns the RMA number and the last one closes the RMA (or records why
the equipment is still not working). Those rules live on the step kind, so
the toggle in ``RMAManager`` never has to know which position is special.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from ..activity_log import format_inline_timestamp
from ..errors import ValidationError


class StepKind(str, Enum):
    STANDARD = "standard"
    REQUIRES_RMA_NUMBER = "requires_rma_number"
    REQUIRES_CLOSING_NOTES = "requires_closing_notes"


@dataclass
class StepChange:
    """Field updates produced by one toggle, written together."""

    step_fields: Dict = field(default_factory=dict)
    rma_fields: Dict = field(default_factory=dict)
    log_lines: List[str] = field(default_factory=list)
    needs_functionality_notes: bool = False


class StandardStep:
    kind = StepKind.STANDARD

    def validate(self, completed: bool, rma_number=None, functionality_notes=None):
        """Raise ValidationError when the toggle may not proceed."""
        if functionality_notes is not None and not isinstance(functionality_notes, str):
            raise ValidationError("Field 'functionality_notes' must be a string")

    def apply(self, change: StepChange, completed: bool, when: datetime,
              rma_number: Optional[str] = None, functionality_notes: Optional[str] = None):
        """Add this kind's side effects to ``change``."""


class RmaNumberStep(StandardStep):
    kind = StepKind.REQUIRES_RMA_NUMBER

    def validate(self, completed, rma_number=None, functionality_notes=None):
        super().validate(completed, rma_number, functionality_notes)
        if rma_number is not None and not isinstance(rma_number, str):
            raise ValidationError("Field 'rma_number' must be a string")
        if completed and not (rma_number or "").strip():
            raise ValidationError("RMA number required")

    def apply(self, change, completed, when, rma_number=None, functionality_notes=None):
        # Un-checking keeps the number already assigned.
        if not completed:
            return
        number = rma_number.strip()
        change.rma_fields["rma_number"] = number
        change.log_lines.append(
            f"RMA #{number} criado e número atribuído em {format_inline_timestamp(when)}"
        )


class ClosingNotesStep(StandardStep):
    kind = StepKind.REQUIRES_CLOSING_NOTES

    def apply(self, change, completed, when, rma_number=None, functionality_notes=None):
        if completed:
            change.step_fields["functionality_notes"] = None
            change.rma_fields["status"] = "completed"
        else:
            change.step_fields["functionality_notes"] = functionality_notes or ""
            change.needs_functionality_notes = True


@dataclass(frozen=True)
class StepDefinition:
    order: int
    name: str
    kind: StepKind


STEP_DEFINITIONS = (
    StepDefinition(1, "Solicitação e atribuição do número de RMA", StepKind.REQUIRES_RMA_NUMBER),
    StepDefinition(2, "Envio das instruções de retorno ao cliente", StepKind.STANDARD),
    StepDefinition(3, "Recebimento do equipamento", StepKind.STANDARD),
    StepDefinition(4, "Inspeção inicial", StepKind.STANDARD),
    StepDefinition(5, "Diagnóstico técnico", StepKind.STANDARD),
    StepDefinition(6, "Orçamento e aprovação do cliente", StepKind.STANDARD),
    StepDefinition(7, "Reparo ou substituição", StepKind.STANDARD),
    StepDefinition(8, "Testes finais", StepKind.STANDARD),
    StepDefinition(9, "Verificação de funcionalidade e devolução", StepKind.REQUIRES_CLOSING_NOTES),
)

CLOSING_STEP_ORDER = next(d.order for d in STEP_DEFINITIONS if d.kind is StepKind.REQUIRES_CLOSING_NOTES)

_BEHAVIOURS = {
    StepKind.STANDARD: StandardStep(),
    StepKind.REQUIRES_RMA_NUMBER: RmaNumberStep(),
    StepKind.REQUIRES_CLOSING_NOTES: ClosingNotesStep(),
}

_KIND_BY_ORDER = {d.order: d.kind for d in STEP_DEFINITIONS}


def kind_for_order(step_order: int) -> StepKind:
    return _KIND_BY_ORDER.get(step_order, StepKind.STANDARD)


def behaviour_for(kind: StepKind) -> StandardStep:
    return _BEHAVIOURS[kind]
