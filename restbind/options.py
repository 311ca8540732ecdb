"""Optional-parameter builders.

An options value is an immutable, ordered list of (role, name, value)
contributions. Every fluent call returns a new value, so a partially built
options object can be shared and extended without affecting other callers:

    base = ListSnapshotsOptions.account_in_domain("acc", 7)
    mine = base.keyword("nightly")      # base is unchanged

Methods decorated with ``@option`` can be called on the class (starting from
an empty value) or on an instance (extending it), mirroring the usual
``Options.Builder.x().y()`` idiom.
"""

from __future__ import annotations

import types
from typing import Any, Callable, NamedTuple, Self

from restbind.models import BindingRole


class OptionBinding(NamedTuple):
    """One contribution of an options value."""

    role: BindingRole
    name: str
    value: Any


class option:
    """Decorator for fluent option methods callable on the class or an instance."""

    def __init__(self, func: Callable[..., Any]) -> None:
        self.func = func
        self.__doc__ = func.__doc__
        self.__name__ = func.__name__

    def __get__(self, obj: Any, owner: type) -> Callable[..., Any]:
        target = obj if obj is not None else owner()
        return types.MethodType(self.func, target)


class RequestOptions:
    """Base class for option builders; also usable directly for ad-hoc pairs."""

    __slots__ = ("_bindings",)

    def __init__(self, bindings: tuple[OptionBinding, ...] = ()) -> None:
        self._bindings = tuple(bindings)

    def bindings(self) -> tuple[OptionBinding, ...]:
        """Contributions in the order they were first set."""
        return self._bindings

    @option
    def query(self, name: str, value: Any) -> Self:
        return self._with(BindingRole.QUERY, name, value)

    @option
    def header(self, name: str, value: Any) -> Self:
        return self._with(BindingRole.HEADER, name, value)

    def _with(self, role: BindingRole, name: str, value: Any) -> Self:
        """Return a copy with the contribution set.

        Setting a name that is already present replaces its value in place,
        so the position of a parameter is fixed by its first assignment.
        Header names compare case-insensitively.
        """
        if not name:
            raise ValueError("option name must not be empty")
        if value is None:
            raise ValueError(f"option '{name}' must not be None")

        def same(existing: OptionBinding) -> bool:
            if existing.role != role:
                return False
            if role == BindingRole.HEADER:
                return existing.name.lower() == name.lower()
            return existing.name == name

        bindings = list(self._bindings)
        for i, existing in enumerate(bindings):
            if same(existing):
                bindings[i] = OptionBinding(role, existing.name, value)
                break
        else:
            bindings.append(OptionBinding(role, name, value))
        return type(self)(tuple(bindings))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RequestOptions):
            return NotImplemented
        return type(self) is type(other) and self._bindings == other._bindings

    def __hash__(self) -> int:
        return hash((type(self), self._bindings))

    def __bool__(self) -> bool:
        return bool(self._bindings)

    def __repr__(self) -> str:
        pairs = ", ".join(f"{b.role.value}:{b.name}={b.value!r}" for b in self._bindings)
        return f"{type(self).__name__}({pairs})"
