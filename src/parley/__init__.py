# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Parley - conversation membership over a replicated object store."""

__version__ = "0.1.0"
