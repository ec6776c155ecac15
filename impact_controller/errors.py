"""Exceptions raised for whole-run tooling failures."""

from __future__ import annotations


class ImpactError(Exception):
    """Base class for impact controller errors."""


class ConfigError(ImpactError):
    """Invalid configuration or toolchain profile."""


class ReportError(ImpactError):
    """The report file could not be written."""
