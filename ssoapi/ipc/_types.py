"""Method introspection for service Protocol classes."""

from __future__ import annotations

import functools
import inspect
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, get_args, get_origin, get_type_hints

import pyarrow as pa

from ssoapi.ipc._protocol import AuthCallback
from ssoapi.utils import ArrowSerializableDataclass, _is_optional_type

_EMPTY_SCHEMA = pa.schema([])


class MethodKind(Enum):
    """Call pattern of a remote method, derived from its signature."""

    TWO_PHASE = "two_phase"
    """Takes an ``AuthCallback``; the result arrives through it."""

    FIRE_AND_FORGET = "fire_and_forget"
    """Returns ``None``; only transport success or failure is observable."""

    QUERY = "query"
    """Returns a record or a list of records directly."""


@dataclass(frozen=True)
class RemoteMethodInfo:
    """Metadata for a single remote method, derived from Protocol type hints.

    Attributes:
        name: Method name as it appears on the Protocol.
        kind: The method's call pattern.
        params_schema: Arrow schema for the plain (string) parameters; the
            callback parameter never crosses the wire as data.
        callback_param: Name of the ``AuthCallback`` parameter, or ``None``.
        result_record: Record type carried by the synchronous reply, or
            ``None`` when the method returns nothing.
        result_is_list: ``True`` when the reply is a list of records.
        doc: The method's docstring, or ``None``.

    """

    name: str
    kind: MethodKind
    params_schema: pa.Schema
    callback_param: str | None
    result_record: type[ArrowSerializableDataclass] | None
    result_is_list: bool
    doc: str | None

    @property
    def param_names(self) -> list[str]:
        """Names of the parameters carried in the request batch."""
        return [f.name for f in self.params_schema]

    @property
    def result_schema(self) -> pa.Schema:
        """Arrow schema of the synchronous reply batch."""
        if self.result_record is None:
            return _EMPTY_SCHEMA
        return self.result_record.ARROW_SCHEMA


def _classify_result(protocol: type, name: str, hint: Any) -> tuple[type[ArrowSerializableDataclass] | None, bool]:
    """Return ``(record_type, is_list)`` for a return annotation."""
    if hint is None or hint is type(None):
        return None, False
    inner, _ = _is_optional_type(hint)
    if get_origin(inner) is list:
        args = get_args(inner)
        if args and isinstance(args[0], type) and issubclass(args[0], ArrowSerializableDataclass):
            return args[0], True
    elif isinstance(inner, type) and issubclass(inner, ArrowSerializableDataclass):
        return inner, False
    raise TypeError(f"{protocol.__name__}.{name}() has unsupported return type {hint!r}")


@functools.lru_cache(maxsize=16)
def remote_methods(protocol: type) -> Mapping[str, RemoteMethodInfo]:
    """Introspect a Protocol class and return RemoteMethodInfo for each method.

    Skips underscore-prefixed names and non-callable attributes.

    Raises:
        TypeError: If a parameter is neither ``str`` nor ``AuthCallback``, or
            a return type cannot be carried on the wire.

    """
    result: dict[str, RemoteMethodInfo] = {}
    for name in dir(protocol):
        if name.startswith("_"):
            continue
        attr = getattr(protocol, name, None)
        if attr is None or not callable(attr):
            continue

        try:
            hints = get_type_hints(attr)
        except (NameError, AttributeError) as exc:
            raise TypeError(f"Failed to resolve type hints for {protocol.__name__}.{name}(): {exc}") from exc

        fields: list[pa.Field[Any]] = []
        callback_param: str | None = None
        for param in inspect.signature(attr).parameters:
            if param == "self":
                continue
            hint = hints.get(param)
            if hint is AuthCallback:
                callback_param = param
            elif hint is str:
                fields.append(pa.field(param, pa.string(), nullable=False))
            else:
                raise TypeError(f"{protocol.__name__}.{name}() parameter '{param}' has unsupported type {hint!r}")

        result_record, result_is_list = _classify_result(protocol, name, hints.get("return"))
        if callback_param is not None:
            kind = MethodKind.TWO_PHASE
        elif result_record is None:
            kind = MethodKind.FIRE_AND_FORGET
        else:
            kind = MethodKind.QUERY

        result[name] = RemoteMethodInfo(
            name=name,
            kind=kind,
            params_schema=pa.schema(fields),
            callback_param=callback_param,
            result_record=result_record,
            result_is_list=result_is_list,
            doc=getattr(attr, "__doc__", None),
        )

    return MappingProxyType(result)


def _validate_implementation(
    protocol: type,
    implementation: object,
    methods: Mapping[str, RemoteMethodInfo],
) -> None:
    """Validate that *implementation* provides every method of *protocol*.

    Raises:
        TypeError: If one or more methods are missing, not callable, or
            lack a parameter the protocol declares.  The message lists
            every problem.

    """
    errors: list[str] = []
    for name, info in methods.items():
        method = getattr(implementation, name, None)
        if method is None:
            errors.append(f"missing method {name}()")
            continue
        if not callable(method):
            errors.append(f"'{name}' exists but is not callable")
            continue
        impl_params = set(inspect.signature(method).parameters)
        expected = [*info.param_names, *([info.callback_param] if info.callback_param else [])]
        errors.extend(f"'{name}()' missing parameter '{p}'" for p in expected if p not in impl_params)

    if errors:
        header = f"{type(implementation).__name__} does not implement {protocol.__name__}:"
        detail = "\n".join(f"  - {e}" for e in errors)
        raise TypeError(f"{header}\n{detail}")
