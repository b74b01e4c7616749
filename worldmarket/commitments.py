"""
Trade commitments. A commitment is a SHA-256 digest that binds who bought,
which worlds, how many shares, and a per-market nonce:

    sha256(user_utf8
           || u64le(len(outcomes)) || u64le(outcome) ...
           || f64le(shares)
           || u64le(nonce))

The nonce increments on every commit in a market, so two bit-identical
trades still produce different digests. Digests are appended to a per-user
log and can later be checked for membership (audit / claim).

The log is NOT thread-safe on its own; it lives inside a Market and is only
touched under that market's write lock.
"""

import hashlib
import struct
from dataclasses import dataclass, field
from typing import Iterable, Optional


@dataclass(frozen=True)
class Commitment:
    digest: str     # 64 hex chars
    nonce: int


def commitment_digest(user: str, outcomes: Iterable[int], shares: float,
                      nonce: int) -> str:
    outcomes = list(outcomes)
    h = hashlib.sha256()
    h.update(user.encode("utf-8"))
    h.update(struct.pack("<Q", len(outcomes)))
    for outcome in outcomes:
        h.update(struct.pack("<Q", outcome))
    h.update(struct.pack("<d", shares))
    h.update(struct.pack("<Q", nonce))
    return h.hexdigest()


@dataclass
class CommitmentLog:
    nonce: int = 0
    entries: dict[str, list[str]] = field(default_factory=dict)

    def commit(self, user: str, outcomes: Iterable[int],
               shares: float) -> Commitment:
        self.nonce += 1
        digest = commitment_digest(user, outcomes, shares, self.nonce)
        self.entries.setdefault(user, []).append(digest)
        return Commitment(digest=digest, nonce=self.nonce)

    def verify(self, user: str, digest: str) -> bool:
        return digest.lower() in self.entries.get(user, ())

    def latest(self, user: str) -> Optional[str]:
        log = self.entries.get(user)
        return log[-1] if log else None
