# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Exception hierarchy for Parley.

Provisioning operations raise these to their caller. The sync filters never
let them escape (a bad object resolves to ``False``), and the received-object
reconciler logs and skips them.
"""

from __future__ import annotations

from typing import Any


class ParleyException(Exception):  # noqa: N818
    """Base exception for all Parley errors."""

    code = "parley_error"

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(ParleyException):
    """Exception for validation errors.

    Raised when:
    - Input validation fails
    - An identifier has the wrong shape
    """

    code = "validation_error"

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class ConfigException(ParleyException):
    """Exception for configuration errors."""

    code = "config_error"


class NotFoundError(ParleyException):
    """A referenced Group, Membership Set, Channel or Topic is missing.

    Also raised for a Group whose Membership Set is empty: a group with zero
    members is a data-integrity fault, never a valid empty group.
    """

    code = "not_found"

    def __init__(self, resource_type: str, resource_id: str, reason: str | None = None):
        message = f"{resource_type} not found: {resource_id}"
        if reason:
            message = f"{message} ({reason})"
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        if reason:
            details["reason"] = reason
        super().__init__(message, details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidParticipantCountError(ValidationException):
    """The two-party path was given a number of distinct participants other than two."""

    code = "invalid_participant_count"

    def __init__(self, expected: int, got: int):
        super().__init__(
            f"P2P topic requires exactly {expected} participants, got {got}",
            field="participants",
            value=got,
        )
        self.expected = expected
        self.got = got


class InvalidTopicIdError(ValidationException):
    """A topic id does not fit the operation (e.g. a P2P id passed to the group path)."""

    code = "invalid_topic_id"

    def __init__(self, topic_id: str, reason: str):
        super().__init__(f"Invalid topic id {topic_id!r}: {reason}", field="topic_id", value=topic_id)
        self.topic_id = topic_id


class AlreadyExistsError(ParleyException):
    """An object being created already exists.

    Idempotent creation paths catch this and return the existing object.
    """

    code = "already_exists"

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} already exists: {resource_id}",
            {"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class AttestationInvalidError(ParleyException):
    """A certificate exists but fails the trust or cryptographic check."""

    code = "attestation_invalid"

    def __init__(self, certificate_hash: str, reason: str):
        super().__init__(
            f"Attestation {certificate_hash[:8]} invalid: {reason}",
            {"certificate": certificate_hash, "reason": reason},
        )
        self.certificate_hash = certificate_hash
        self.reason = reason


class StoreError(ParleyException):
    """The object store failed to complete an operation."""

    code = "store_error"


class ObjectNotFoundError(StoreError):
    """The store holds no object under the given hash."""

    code = "object_not_found"

    def __init__(self, ref: str, kind: str = "object"):
        super().__init__(f"No {kind} stored under {ref[:8]}", {"ref": ref, "kind": kind})
        self.ref = ref
        self.kind = kind
