
"""Consistent hashing ring using xxh3_64.
- Sorted token array for O(log V) lookups via bisect
- Fixed number of virtual nodes per physical node
- Copy-on-write snapshots: lookups never take the lock
- Injectable hash function (bytes -> unsigned int), seeded xxh3_64 by default
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union
import bisect
import logging
import threading

try:
    import xxhash
except ImportError as e:
    raise RuntimeError("xxhash is required. Install with: pip install xxhash") from e

log = logging.getLogger(__name__)

NodeID = Union[str, bytes]
HashFn = Callable[[bytes], int]

VNODE_SEPARATOR = b"#"


class HashRingError(Exception):
    """Base class for ring errors."""


class InvalidConfigurationError(HashRingError, ValueError):
    """Raised at construction (or call) time for invalid parameters."""


class EmptyRingError(HashRingError, LookupError):
    """Raised by resolve() when the ring holds no nodes."""


def h64(data: bytes, seed: int = 0) -> int:
    return xxhash.xxh3_64_intdigest(data, seed=seed)


def to_bytes(value: NodeID) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def _merge(tokens: Tuple[int, ...], owners: Tuple[NodeID, ...], updates: List[Tuple[int, NodeID]]):
    """Merge sorted (token, owner) updates into the ring in one pass.

    An update on an existing token replaces its owner.
    """
    out_t: List[int] = []
    out_o: List[NodeID] = []
    prev = 0
    for token, owner in updates:
        idx = bisect.bisect_left(tokens, token, prev)
        out_t.extend(tokens[prev:idx])
        out_o.extend(owners[prev:idx])
        out_t.append(token)
        out_o.append(owner)
        if idx < len(tokens) and tokens[idx] == token:
            if owners[idx] != owner:
                log.debug("token collision at %d: %r overwrites %r", token, owner, owners[idx])
            idx += 1
        prev = idx
    out_t.extend(tokens[prev:])
    out_o.extend(owners[prev:])
    return tuple(out_t), tuple(out_o)


def _drop(tokens: Tuple[int, ...], owners: Tuple[NodeID, ...], indices: List[int]):
    """Copy the ring without the entries at the sorted ``indices``."""
    out_t: List[int] = []
    out_o: List[NodeID] = []
    prev = 0
    for idx in indices:
        out_t.extend(tokens[prev:idx])
        out_o.extend(owners[prev:idx])
        prev = idx + 1
    out_t.extend(tokens[prev:])
    out_o.extend(owners[prev:])
    return tuple(out_t), tuple(out_o)


@dataclass(frozen=True)
class _Snapshot:
    tokens: Tuple[int, ...] = ()
    owners: Tuple[NodeID, ...] = ()
    # encoded id -> id as last added; 'x' and b'x' are the same node
    nodes: Dict[bytes, NodeID] = field(default_factory=dict)


class HashRing:
    """Consistent hashing ring with virtual nodes.

    Mutations are serialized by a lock and publish a new immutable snapshot;
    lookups read whichever snapshot is current, so they always observe a
    fully applied add/remove. Each write is a single O(V) copy.

    A ``str`` id and its UTF-8 ``bytes`` form name the same node. The ring
    reports whichever spelling was added last.
    """

    def __init__(self, virtual_nodes: int = 3, hash_fn: Optional[HashFn] = None, seed: int = 0):
        if isinstance(virtual_nodes, bool) or not isinstance(virtual_nodes, int):
            raise InvalidConfigurationError(f"virtual_nodes must be an int, got {virtual_nodes!r}")
        if virtual_nodes <= 0:
            raise InvalidConfigurationError(f"virtual_nodes must be positive, got {virtual_nodes}")
        if hash_fn is not None and not callable(hash_fn):
            raise InvalidConfigurationError("hash_fn must be callable")
        self._vn = virtual_nodes
        self._seed = seed
        self._hash_fn = hash_fn
        self._lock = threading.RLock()
        self._snapshot = _Snapshot()

    @property
    def virtual_nodes(self) -> int:
        return self._vn

    def _hash(self, data: bytes) -> int:
        if self._hash_fn is None:
            return h64(data, seed=self._seed)
        return self._hash_fn(data)

    def _token_for_vn(self, node: NodeID, replica_idx: int) -> int:
        return self._hash(to_bytes(node) + VNODE_SEPARATOR + str(replica_idx).encode("ascii"))

    def _tokens_for(self, node: NodeID) -> List[int]:
        return [self._token_for_vn(node, i) for i in range(self._vn)]

    def position_for(self, key: NodeID) -> int:
        """Ring position a key hashes to."""
        return self._hash(to_bytes(key))

    def add_node(self, node: NodeID) -> None:
        """Place ``virtual_nodes`` tokens for ``node``.

        A token landing on an occupied position takes it over (last write
        wins). Re-adding a present node rewrites identical entries.
        """
        tokens = self._tokens_for(node)
        updates = sorted({t: node for t in tokens}.items())
        with self._lock:
            snap = self._snapshot
            ring_tokens, owners = _merge(snap.tokens, snap.owners, updates)
            nodes = dict(snap.nodes)
            nodes[to_bytes(node)] = node
            self._snapshot = _Snapshot(ring_tokens, owners, nodes)
        log.debug("added node=%r vnodes=%d", node, len(tokens))

    def remove_node(self, node: NodeID) -> None:
        """Drop the tokens ``node`` owns. Absent nodes are ignored.

        A position taken over by another node through a collision is left
        in place.
        """
        name = to_bytes(node)
        tokens = self._tokens_for(node)
        with self._lock:
            snap = self._snapshot
            if name not in snap.nodes:
                return
            indices = set()
            for token in tokens:
                idx = bisect.bisect_left(snap.tokens, token)
                if idx < len(snap.tokens) and snap.tokens[idx] == token and to_bytes(snap.owners[idx]) == name:
                    indices.add(idx)
            ring_tokens, owners = _drop(snap.tokens, snap.owners, sorted(indices))
            nodes = dict(snap.nodes)
            del nodes[name]
            self._snapshot = _Snapshot(ring_tokens, owners, nodes)
        log.debug("removed node=%r tokens=%d", node, len(indices))

    def get_node(self, key: NodeID) -> Optional[NodeID]:
        """Owner of ``key``, or None when the ring is empty."""
        snap = self._snapshot
        if not snap.tokens:
            return None
        tok = self.position_for(key)
        idx = bisect.bisect_left(snap.tokens, tok)
        if idx == len(snap.tokens):
            idx = 0
        return snap.owners[idx]

    def resolve(self, key: NodeID) -> NodeID:
        """Owner of ``key``; raises EmptyRingError when the ring has no nodes."""
        node = self.get_node(key)
        if node is None:
            raise EmptyRingError(f"no nodes available for key {key!r}")
        return node

    def get_nodes_for_key(self, key: NodeID, replicas: int = 1) -> List[NodeID]:
        """Up to ``replicas`` distinct nodes, walking clockwise from the owner of ``key``."""
        if replicas < 1:
            raise InvalidConfigurationError(f"replicas must be positive, got {replicas}")
        snap = self._snapshot
        n = len(snap.tokens)
        if not n:
            return []
        start = bisect.bisect_left(snap.tokens, self.position_for(key))
        out: List[NodeID] = []
        for step in range(n):
            nid = snap.owners[(start + step) % n]
            if nid not in out:
                out.append(nid)
                if len(out) >= replicas:
                    break
        return out

    def nodes(self) -> List[NodeID]:
        return list(self._snapshot.nodes.values())

    def size(self) -> int:
        return len(self._snapshot.nodes)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, node: object) -> bool:
        if not isinstance(node, (str, bytes)):
            return False
        return to_bytes(node) in self._snapshot.nodes

    def dump_tokens(self) -> List[Tuple[int, NodeID]]:
        snap = self._snapshot
        return list(zip(snap.tokens, snap.owners))

    def stats(self) -> Dict[str, int]:
        snap = self._snapshot
        return {"nodes": len(snap.nodes), "tokens": len(snap.tokens), "virtual_nodes": self._vn}

    def clone(self) -> "HashRing":
        """Independent copy of the ring for before/after comparison."""
        other = HashRing(self._vn, hash_fn=self._hash_fn, seed=self._seed)
        # snapshots are never mutated in place, sharing one is safe
        other._snapshot = self._snapshot
        return other

    def __repr__(self) -> str:
        return f"HashRing(virtual_nodes={self._vn}, nodes={self.nodes()!r})"
