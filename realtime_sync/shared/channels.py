"""
MODULE OVERVIEW:
The channel naming scheme for every push subscription the client opens.

WHAT IS HAPPENING HERE:
A channel name is `<prefix>-<owner identity>`, where the prefix is looked up
from a fixed table keyed by (role family, resource type). Coach channels
aggregate updates across a coach's students but are keyed only by the coach's
own id; student channels are keyed by the student's own id and only exist for
assignments and tasks. The transport authorizes subscriptions per owner, so
keeping the names unambiguous is what keeps one user's updates out of another
user's feed.

No rendered prefix is allowed to be the start of another one. That makes every
name split back into exactly one (family, resource type, owner) triple, which
is the same thing as saying two different triples can never collide.
"""
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

SEPARATOR = "-"


class ChannelScopeError(ValueError):
    """Raised when a channel is requested outside the scoping contract."""


class Role(str, Enum):
    COACH = "coach"
    STUDENT = "student"


class ResourceType(str, Enum):
    TASK_UPDATES = "task-updates"
    CHECK_INS = "check-ins"
    ASSIGNMENTS = "assignments"
    TASKS = "tasks"


# Students never see coach-aggregate streams.
ALLOWED_RESOURCE_TYPES: dict[Role, frozenset[ResourceType]] = {
    Role.COACH: frozenset({ResourceType.TASK_UPDATES, ResourceType.CHECK_INS}),
    Role.STUDENT: frozenset({ResourceType.ASSIGNMENTS, ResourceType.TASKS}),
}


class ChannelScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    family: Role
    resource_type: ResourceType
    owner_identity: str


class ChannelScheme(BaseModel):
    """
    The prefix table channel names are built from.

    Passed explicitly to the derivation functions so call sites (and tests)
    never depend on module-level mutable state. Validation rejects tables
    that would make two triples render to the same name.
    """
    model_config = ConfigDict(frozen=True)

    prefixes: Mapping[Role, Mapping[ResourceType, str]]

    @field_validator("prefixes", mode="after")
    @classmethod
    def _freeze_prefixes(cls, prefixes):
        # Read-only so a shared scheme cannot be edited past validation
        return MappingProxyType({
            family: MappingProxyType(dict(by_resource))
            for family, by_resource in prefixes.items()
        })

    @model_validator(mode="after")
    def _check_prefixes(self) -> "ChannelScheme":
        rendered: list[tuple[str, Role, ResourceType]] = []
        for family, by_resource in self.prefixes.items():
            for resource_type, prefix in by_resource.items():
                if resource_type not in ALLOWED_RESOURCE_TYPES[family]:
                    raise ValueError(
                        f"resource type {resource_type.value!r} is not allowed for family {family.value!r}"
                    )
                if not prefix:
                    raise ValueError(f"invalid prefix {prefix!r} for {family.value}/{resource_type.value}")
                rendered.append((f"{prefix}{SEPARATOR}", family, resource_type))

        for head, family, resource_type in rendered:
            for other, other_family, other_resource in rendered:
                if (family, resource_type) == (other_family, other_resource):
                    continue
                if other.startswith(head):
                    raise ValueError(
                        f"prefix {head!r} ({family.value}/{resource_type.value}) overlaps "
                        f"{other!r} ({other_family.value}/{other_resource.value})"
                    )
        return self

    def prefix_for(self, family: Role, resource_type: ResourceType) -> str:
        try:
            return self.prefixes[family][resource_type]
        except KeyError:
            raise ChannelScopeError(
                f"No {family.value} channel exists for resource type {resource_type.value!r}"
            ) from None


DEFAULT_SCHEME = ChannelScheme(
    prefixes={
        # Coach channels: every student update in the coach's groups
        Role.COACH: {
            ResourceType.TASK_UPDATES: "coach-tasks",
            ResourceType.CHECK_INS: "coach-checkins",
        },
        # Student channels: only the student's own work
        Role.STUDENT: {
            ResourceType.ASSIGNMENTS: "student-assignments",
            ResourceType.TASKS: "student-tasks",
        },
    }
)


def _coerce_family(family: Role | str) -> Role:
    try:
        return Role(family)
    except ValueError:
        raise ChannelScopeError(f"Unknown channel family: {family!r}") from None


def _coerce_resource_type(resource_type: ResourceType | str) -> ResourceType:
    try:
        return ResourceType(resource_type)
    except ValueError:
        raise ChannelScopeError(f"Unknown resource type: {resource_type!r}") from None


def _check_owner(owner_identity: str) -> str:
    if not isinstance(owner_identity, str) or not owner_identity.strip():
        raise ChannelScopeError(f"Owner identity must be a non-empty string, got {owner_identity!r}")
    if owner_identity != owner_identity.strip():
        raise ChannelScopeError(f"Owner identity has surrounding whitespace: {owner_identity!r}")
    return owner_identity


def derive_channel_name(
    family: Role | str,
    resource_type: ResourceType | str,
    owner_identity: str,
    scheme: ChannelScheme = DEFAULT_SCHEME,
) -> str:
    """
    Build the channel name for one (family, resource type, owner) triple.

    Pure and deterministic. Any argument outside the contract raises
    `ChannelScopeError`; there is nothing to recover from at runtime.

    >>> derive_channel_name("coach", "task-updates", "c-42")
    'coach-tasks-c-42'
    """
    family = _coerce_family(family)
    resource_type = _coerce_resource_type(resource_type)
    owner_identity = _check_owner(owner_identity)
    prefix = scheme.prefix_for(family, resource_type)
    return f"{prefix}{SEPARATOR}{owner_identity}"


def parse_channel_name(name: str, scheme: ChannelScheme = DEFAULT_SCHEME) -> ChannelScope:
    """Split a channel name back into the triple that produced it."""
    for family, by_resource in scheme.prefixes.items():
        for resource_type, prefix in by_resource.items():
            head = f"{prefix}{SEPARATOR}"
            if name.startswith(head) and len(name) > len(head):
                owner_identity = name[len(head):]
                if owner_identity == owner_identity.strip():
                    return ChannelScope(family=family, resource_type=resource_type, owner_identity=owner_identity)
    raise ChannelScopeError(f"Not a channel name produced by this scheme: {name!r}")


def channels_for(
    role: Role | str,
    owner_identity: str,
    scheme: ChannelScheme = DEFAULT_SCHEME,
) -> dict[ResourceType, str]:
    """Every channel `role` can subscribe to for `owner_identity`."""
    role = _coerce_family(role)
    return {
        resource_type: derive_channel_name(role, resource_type, owner_identity, scheme)
        for resource_type in scheme.prefixes.get(role, {})
    }
