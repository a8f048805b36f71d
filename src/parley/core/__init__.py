# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Core infrastructure: configuration, logging and exceptions."""
