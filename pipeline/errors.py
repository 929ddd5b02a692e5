"""
Error taxonomy for the PO processing pipeline.

  ValidationFailure       extracted fields missing or malformed (user can correct)
  IllegalTransition       workflow rule violation
  InsufficientData        forecast history too short
  ExternalServiceFailure  the extraction model call failed
  PersistenceFailure      storage error (EntityNotFound for unknown ids)
  SerialsExhausted        no quotation serial left for the day
"""
from typing import Optional

from models.result import FieldIssue


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ValidationFailure(PipelineError):
    def __init__(self, schema: str, issues: list[FieldIssue]):
        self.schema = schema
        self.issues = issues
        fields = ", ".join(i.field for i in issues)
        super().__init__(f"{schema} extraction failed validation: {fields}")

    @property
    def fields(self) -> list[str]:
        return [i.field for i in self.issues]


class IllegalTransition(PipelineError):
    def __init__(self, kind: str, status: Optional[str], action: str, reason: str = ""):
        self.kind = kind
        self.status = status
        self.action = action
        msg = f"Cannot {action!r} a {kind} in status {status!r}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class InsufficientData(PipelineError):
    def __init__(self, material_code: str, event_count: int):
        self.material_code = material_code
        self.event_count = event_count
        super().__init__(
            f"Insufficient data to forecast {material_code!r}: "
            f"{event_count} purchase(s), at least 2 on different days required"
        )


class ExternalServiceFailure(PipelineError):
    """The extraction model could not be reached or returned nothing usable."""


class PersistenceFailure(PipelineError):
    """Raised by the database gateway; propagated unchanged by the workflow."""


class EntityNotFound(PersistenceFailure):
    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id!r} not found")


class SerialsExhausted(PipelineError):
    def __init__(self, prefix: str, day):
        self.prefix = prefix
        self.day = day
        super().__init__(
            f"All {prefix} quotation serials for {day:%d-%m-%Y} are used up; "
            "no more quotations can be numbered today"
        )
