"""
MODULE OVERVIEW:
One signed-in user's realtime session.

WHAT IS HAPPENING HERE:
This is where the two halves of the reliability layer meet. On start we derive
the user's channel names from their role and id, open one subscription per
channel, and register the reconciliation set with the visibility monitor. From
then on pushes invalidate queries as they arrive, and every return to the
foreground invalidates the whole reconciliation set regardless of what the
channels delivered. On close the reconciliation listener is released exactly
once and every channel is torn down.
"""

import asyncio
from typing import Callable, Sequence

from loguru import logger

from realtime_sync.client.reconciliation import Invalidator, register_reconciliation
from realtime_sync.client.subscription import RealtimeSubscription
from realtime_sync.shared.channels import ResourceType, Role, derive_channel_name, DEFAULT_SCHEME, ChannelScheme
from realtime_sync.shared.events import VisibilityMonitor
from realtime_sync.shared.models import ChannelSpec
from realtime_sync.shared.query_keys import QueryKey, query_keys


def plan_subscriptions(
    role: Role | str,
    owner_identity: str,
    scheme: ChannelScheme = DEFAULT_SCHEME,
) -> list[ChannelSpec]:
    """The channels a user of `role` listens on, and what each one invalidates."""
    role = Role(role)

    def channel(resource_type: ResourceType) -> str:
        return derive_channel_name(role, resource_type, owner_identity, scheme)

    if role is Role.COACH:
        return [
            # Task completions by any student in the coach's groups
            ChannelSpec(
                channel_name=channel(ResourceType.TASK_UPDATES),
                table="task_instances",
                query_keys_to_invalidate=[query_keys.assignments.all],
            ),
            ChannelSpec(
                channel_name=channel(ResourceType.CHECK_INS),
                table="student_logs",
                event="INSERT",
                query_keys_to_invalidate=[query_keys.check_ins.all],
            ),
        ]

    return [
        ChannelSpec(
            channel_name=channel(ResourceType.ASSIGNMENTS),
            table="assignments",
            filter=f"assignee_id=eq.{owner_identity}",
            query_keys_to_invalidate=[query_keys.assignments.all],
        ),
        ChannelSpec(
            channel_name=channel(ResourceType.TASKS),
            table="task_instances",
            filter=f"assignee_id=eq.{owner_identity}",
            query_keys_to_invalidate=[query_keys.assignments.all],
        ),
    ]


def default_reconciliation_set(role: Role | str, owner_identity: str) -> list[QueryKey]:
    role = Role(role)
    if role is Role.COACH:
        return [
            query_keys.assignments.all,
            query_keys.groups.all,
            query_keys.check_ins.all,
        ]
    return [
        query_keys.assignments.all,
        query_keys.profile.current(owner_identity),
        query_keys.stickers.by_user(owner_identity),
    ]


class SyncSession:
    def __init__(
        self,
        role: Role | str,
        owner_identity: str,
        invalidator: Invalidator,
        monitor: VisibilityMonitor | None,
        reconciliation_set: Sequence[Sequence] | None = None,
        push_url: str | None = None,
        scheme: ChannelScheme = DEFAULT_SCHEME,
    ):
        self.role = Role(role)
        self.owner_identity = owner_identity
        self.invalidator = invalidator
        self.monitor = monitor
        self.specs = plan_subscriptions(self.role, owner_identity, scheme)
        self.reconciliation_set = (
            list(reconciliation_set)
            if reconciliation_set is not None
            else default_reconciliation_set(self.role, owner_identity)
        )
        self.subscriptions = [
            RealtimeSubscription(spec, invalidator, client_id=f"{self.role.value}-{owner_identity}", push_url=push_url)
            for spec in self.specs
        ]
        self._tasks: list[asyncio.Task] = []
        self._cancel_reconciliation: Callable[[], None] | None = None

    @property
    def channel_names(self) -> list[str]:
        return [spec.channel_name for spec in self.specs]

    @property
    def started(self) -> bool:
        return self._cancel_reconciliation is not None

    async def start(self, duration_s: float | None = None) -> None:
        if self.started:
            return
        logger.info(
            f"role={self.role.value} owner={self.owner_identity} event=session_start "
            f"channels={','.join(self.channel_names)}"
        )
        self._cancel_reconciliation = register_reconciliation(
            self.reconciliation_set,
            self.invalidator,
            self.monitor,
            label=f"{self.role.value}-{self.owner_identity}",
        )
        for subscription in self.subscriptions:
            self._tasks.append(asyncio.create_task(subscription.run(duration_s)))

    async def wait(self) -> None:
        """Block until every subscription's run loop has finished."""
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def close(self) -> None:
        if self._cancel_reconciliation is not None:
            self._cancel_reconciliation()
            self._cancel_reconciliation = None
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info(f"role={self.role.value} owner={self.owner_identity} event=session_close")

    async def __aenter__(self) -> "SyncSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
