"""
Result：ActInRound / RoundFinisher 的回傳型別

成功時帶 value，失敗時帶 kind 與依序排列、非空的原因清單；
兩者不會同時出現
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional


class FailureKind(str, enum.Enum):
    VALIDATION_ERROR = "ValidationError"
    NOT_FOUND = "NotFound"
    INELIGIBLE_ACTION = "IneligibleAction"
    INVALID_ACTION = "InvalidAction"
    PERSISTENCE_FAILURE = "PersistenceFailure"
    FINISHING_FAILURE = "FinishingFailure"


@dataclass(frozen=True)
class Result:
    value: Any = None
    kind: Optional[FailureKind] = None
    errors: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, value: Any = None) -> "Result":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: FailureKind, reasons: Iterable[str]) -> "Result":
        if isinstance(reasons, str):
            reasons = [reasons]
        errors = [reason for reason in reasons if reason]
        if not errors:
            errors = [f"{kind.value} without reason"]
        return cls(kind=kind, errors=errors)

    @property
    def is_success(self) -> bool:
        return self.kind is None

    @property
    def is_failed(self) -> bool:
        return self.kind is not None
