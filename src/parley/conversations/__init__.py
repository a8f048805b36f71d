# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Conversation membership: groups, topics, channels, grants and sync filters."""
