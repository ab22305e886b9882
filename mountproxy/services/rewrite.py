"""Caller-supplied overrides for request and response descriptors.

An override is one of three explicit cases: leave the value alone, replace it
with a fixed value, or transform it with a function. Exceptions raised by a
transform are not caught here; they reach whoever invoked the proxy.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class Override(ABC, Generic[T]):
    """Base for the override variants."""

    @abstractmethod
    def apply(self, original: T) -> T:
        ...


@dataclass(frozen=True)
class Identity(Override[T]):
    """Pass the original value through unchanged."""

    def apply(self, original: T) -> T:
        return original


@dataclass(frozen=True)
class Replace(Override[T]):
    """Use `value` in place of the original."""

    value: T

    def apply(self, original: T) -> T:
        return self.value


@dataclass(frozen=True)
class Transform(Override[T]):
    """Map the original through `fn`."""

    fn: Callable[[T], T]

    def apply(self, original: T) -> T:
        return self.fn(original)


@dataclass(frozen=True)
class Chain(Override[T]):
    """Apply `steps` in order, each seeing the previous result."""

    steps: tuple[Override[T], ...]

    def apply(self, original: T) -> T:
        value = original
        for step in self.steps:
            value = step.apply(value)
        return value


def compose(*overrides: Override[T]) -> Override[T]:
    """Apply `overrides` left to right; identities are dropped."""
    steps = tuple(o for o in overrides if not isinstance(o, Identity))
    if not steps:
        return Identity()
    if len(steps) == 1:
        return steps[0]
    return Chain(steps)
