# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Object store interface, stored object models and an in-memory store."""
