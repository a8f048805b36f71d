# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Trust primitives: certificate kinds, signing keys and verifiers."""
