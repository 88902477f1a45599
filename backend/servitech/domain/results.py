"""Discriminated operation results returned by the public engine facade."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, TypeVar, Union

from servitech.core.exceptions import DomainException

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Err:
    error: DomainException
    ok: bool = field(default=False, init=False)

    @property
    def kind(self) -> str:
        return self.error.kind

    @property
    def status_code(self) -> int:
        return int(self.error.status_code)

    def to_dict(self) -> Dict[str, Any]:
        return {"status_code": self.status_code, **self.error.to_dict()}


OperationResult = Union[Ok[T], Err]
