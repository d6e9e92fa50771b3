"""Argument validation.

The executor hands every bound argument to a validator together with a
:class:`ValidationInfo`. The default validator coerces the value against the
parameter's annotation with pydantic and then applies the simple constraints
that may be embedded in the ``@param`` annotation::

    @param id {@min 1} {@max 999}
    @param mode {@choice fast,slow}
    @param token {@validate false}

``min``/``max`` bound numbers, or the length of strings and collections.
``choice`` is a comma separated list of accepted values. Parameters whose
metadata says ``validate: false`` never reach the validator.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pydantic import TypeAdapter, ValidationError

from .errors import ValidationFailed

__all__ = ["ValidationInfo", "DefaultValidator"]


@dataclass(frozen=True)
class ValidationInfo:
    """What the validator knows about one argument."""

    name: str
    required: bool = True
    default: Any = None
    type_tag: str = "primitive"
    annotation: Any = inspect.Parameter.empty
    metadata: Dict[str, Any] = field(default_factory=dict)
    missing: bool = False
    method: str = ""


class DefaultValidator:
    """Pydantic-backed validator used when the host registers none."""

    def __init__(self) -> None:
        self._adapters: Dict[Any, TypeAdapter] = {}

    def validate(self, value: Any, info: ValidationInfo) -> Any:
        if info.missing:
            raise ValidationFailed(f"`{info.name}` is required.", parameter=info.name)
        if value is None and not info.required:
            return value
        value = self._coerce(value, info)
        self._check_constraints(value, info)
        return value

    def _adapter(self, annotation: Any) -> Optional[TypeAdapter]:
        if annotation is inspect.Parameter.empty or annotation is Any:
            return None
        try:
            adapter = self._adapters.get(annotation)
        except TypeError:
            return TypeAdapter(annotation)
        if adapter is None:
            adapter = TypeAdapter(annotation)
            self._adapters[annotation] = adapter
        return adapter

    def _coerce(self, value: Any, info: ValidationInfo) -> Any:
        adapter = self._adapter(info.annotation)
        if adapter is None:
            return value
        try:
            return adapter.validate_python(value)
        except ValidationError as exc:
            detail = "; ".join(error["msg"] for error in exc.errors())
            raise ValidationFailed(
                f"Invalid value specified for `{info.name}`. {detail}", parameter=info.name
            ) from exc

    def _check_constraints(self, value: Any, info: ValidationInfo) -> None:
        rules = info.metadata
        choice = rules.get("choice")
        if choice is not None:
            accepted = [item.strip() for item in str(choice).split(",")]
            if str(value) not in accepted:
                raise ValidationFailed(
                    f"Invalid value specified for `{info.name}`. "
                    f"Expected one of: {', '.join(accepted)}",
                    parameter=info.name,
                )
        measured = value
        if isinstance(value, (str, bytes, list, tuple, set, dict)):
            measured = len(value)
        if not isinstance(measured, (int, float)) or isinstance(measured, bool):
            return
        minimum = rules.get("min")
        if minimum is not None and measured < float(minimum):
            raise ValidationFailed(
                f"Invalid value specified for `{info.name}`. Minimum is {minimum}",
                parameter=info.name,
            )
        maximum = rules.get("max")
        if maximum is not None and measured > float(maximum):
            raise ValidationFailed(
                f"Invalid value specified for `{info.name}`. Maximum is {maximum}",
                parameter=info.name,
            )
