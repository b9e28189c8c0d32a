#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Exception types raised by chhaya.

"""

from __future__ import annotations


class ChhayaError(Exception):
    """Base class for all chhaya errors."""


class ProjectionConfigError(ChhayaError, ValueError):
    """
    A projection request cannot be satisfied.

    Raised while the request is validated or while variables are resolved,
    always before any worker thread is started.
    """


class LevelDataError(ChhayaError):
    """
    The cells of one AMR level are malformed (coordinates outside the level
    grid, non-finite weights, ...). The level is skipped, the run continues.
    """

    def __init__(self, level: int, reason: str):
        super().__init__(f"level {level}: {reason}")
        self.level = level
        self.reason = reason
