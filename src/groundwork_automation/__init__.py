"""Groundwork idempotent provisioning engine."""

from .resolver import RunConfig, resolve
from .runner import StepGraph

__all__ = ["RunConfig", "StepGraph", "resolve"]
