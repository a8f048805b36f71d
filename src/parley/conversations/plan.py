# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Parley Contributors

"""Group plan: request/response facade over topic provisioning.

Calling business logic talks to this module instead of the provisioner so
it always receives the same ``{success, data, error, code}`` envelope
rather than bare exceptions.

Usage::

    plan = GroupPlan(provisioner)
    response = await plan.create_topic(CreateTopicRequest(name="team", participants=[x]))
    if response.success:
        topic = response.data["topic"]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..core.exceptions import NotFoundError, ParleyException
from ..core.logging import short_id
from ..store.models import GroupRef, Topic
from .topics import TopicProvisioner

logger = logging.getLogger(__name__)


@dataclass
class PlanResponse:
    """Response envelope for every GroupPlan operation.

    Attributes:
        success: True when the operation completed without error.
        data:    Payload returned on success. None for void operations.
        error:   Human-readable error message on failure. None on success.
        code:    Machine-readable error code on failure (the exception's ``code``).
    """

    success: bool
    data: Any = None
    error: str | None = None
    code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a plain dict, keeping only keys that carry information."""
        d: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            d["data"] = self.data
        if self.error:
            d["error"] = self.error
        if self.code:
            d["code"] = self.code
        return d


def ok(data: Any = None) -> PlanResponse:
    return PlanResponse(success=True, data=data)


def err(error: str, code: str | None = None) -> PlanResponse:
    return PlanResponse(success=False, error=error, code=code)


def _from_exception(e: ParleyException) -> PlanResponse:
    return err(e.message, e.code)


def _group_data(ref: GroupRef) -> dict[str, Any]:
    return {
        "group_id": ref.id_hash,
        "group_version": ref.version_hash,
        "membership": ref.membership_hash,
        "certificate": ref.certificate.certificate if ref.certificate else None,
    }


# =============================================================================
# REQUESTS
# =============================================================================


@dataclass
class CreateTopicRequest:
    name: str
    topic_id: str | None = None
    participants: list[str] = field(default_factory=list)
    auto_add_sync_peers: bool | None = None


@dataclass
class CreateP2PTopicRequest:
    participants: list[str]
    name: str | None = None


@dataclass
class GetTopicRequest:
    topic_id: str


@dataclass
class GetTopicParticipantsRequest:
    topic_id: str


@dataclass
class AddParticipantsRequest:
    topic_id: str
    participants: list[str]


# =============================================================================
# PLAN
# =============================================================================


class GroupPlan:
    """Conversation membership operations exposed to calling code."""

    def __init__(self, provisioner: TopicProvisioner):
        self.provisioner = provisioner

    async def create_topic(self, request: CreateTopicRequest) -> PlanResponse:
        try:
            topic = await self.provisioner.create_group_topic(
                request.name,
                request.topic_id,
                request.participants,
                auto_add_sync_peers=request.auto_add_sync_peers,
            )
        except ParleyException as e:
            logger.warning(f"create_topic failed: {e}")
            return _from_exception(e)
        return ok({"topic": topic.to_dict()})

    async def create_p2p_topic(self, request: CreateP2PTopicRequest) -> PlanResponse:
        try:
            topic = await self.provisioner.create_p2p_topic(request.participants, request.name)
        except ParleyException as e:
            logger.warning(f"create_p2p_topic failed: {e}")
            return _from_exception(e)
        return ok({"topic": topic.to_dict()})

    async def get_topic(self, request: GetTopicRequest) -> PlanResponse:
        try:
            record = await self.provisioner.topics.get_topic(request.topic_id)
            if record is None:
                raise NotFoundError("Topic", request.topic_id)
        except ParleyException as e:
            return _from_exception(e)
        topic: Topic = record.obj
        return ok({"topic": topic.to_dict(), "version": record.version_hash})

    async def get_topic_participants(self, request: GetTopicParticipantsRequest) -> PlanResponse:
        try:
            participants = await self.provisioner.get_topic_participants(request.topic_id)
        except ParleyException as e:
            return _from_exception(e)
        return ok({"topic_id": request.topic_id, "participants": participants})

    async def add_participants(self, request: AddParticipantsRequest) -> PlanResponse:
        try:
            ref = await self.provisioner.add_participants_to_topic(request.topic_id, request.participants)
        except ParleyException as e:
            logger.warning(f"add_participants failed for {short_id(request.topic_id)}: {e}")
            return _from_exception(e)
        return ok(_group_data(ref))
