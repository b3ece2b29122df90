"""Core data models for access-log aggregation."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum, Flag, auto


@dataclass(frozen=True, slots=True)
class LogRecord:
    """One parsed access-log line (raw strings except status and bytes)."""

    remote_addr: str
    realip_remote_addr: str
    time: str  # nginx $time_iso8601, kept verbatim for bucketing
    method: str
    url: str  # $scheme://$host$request_uri
    protocol: str
    status: int | None  # None when the captured value is not a decimal
    bytes_sent: int | None
    referer: str
    user_agent: str
    x_forwarded_for: str


class RequestClass(Flag):
    """Status classification; SUCCESS always implies VALID_CLIENT."""

    NONE = 0
    SUCCESS = auto()
    VALID_CLIENT = auto()
    ERROR = auto()


class MutationOp(str, Enum):
    """Counter operations supported by the store."""

    HINCRBY = "hincrby"
    SADD = "sadd"
    ZINCRBY = "zincrby"
    SET = "set"


@dataclass(frozen=True, slots=True)
class Mutation:
    """Single store mutation.

    ``arg`` is the hash field (HINCRBY), set member (SADD), sorted-set member
    (ZINCRBY) or the value (SET).
    """

    op: MutationOp
    key: str
    arg: str
    amount: int = 1


@dataclass(slots=True)
class AggregationBatch:
    """Mutations derived from one record; applied as one transaction."""

    mutations: list[Mutation] = field(default_factory=list)

    def hincrby(self, key: str, hash_field: str, amount: int = 1) -> None:
        self.mutations.append(Mutation(MutationOp.HINCRBY, key, hash_field, amount))

    def sadd(self, key: str, member: str) -> None:
        self.mutations.append(Mutation(MutationOp.SADD, key, member))

    def zincrby(self, key: str, member: str, amount: int = 1) -> None:
        self.mutations.append(Mutation(MutationOp.ZINCRBY, key, member, amount))

    def set(self, key: str, value: str) -> None:
        self.mutations.append(Mutation(MutationOp.SET, key, value))

    def keys(self) -> set[str]:
        return {m.key for m in self.mutations}

    def __iter__(self) -> Iterator[Mutation]:
        return iter(self.mutations)

    def __len__(self) -> int:
        return len(self.mutations)
