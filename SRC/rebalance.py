
"""Rebalancing utilities.

Plan owner changes for keys between two ring states. Moving the data itself is
left to the caller.
"""
from __future__ import annotations

from typing import Iterable, Dict, Tuple, Optional, Collection
from collections import Counter
import logging

from hash_ring import HashRing, NodeID

log = logging.getLogger(__name__)

Plan = Dict[NodeID, Tuple[Optional[NodeID], Optional[NodeID]]]


class RebalancePlanner:
    def plan_moved(self, keys: Iterable[NodeID], ring_before: HashRing, ring_after: HashRing) -> Plan:
        """Return dict key -> (from_owner, to_owner) for keys whose primary owner changed."""
        moved = {}
        for k in keys:
            b = ring_before.get_node(k)
            a = ring_after.get_node(k)
            if b != a:
                moved[k] = (b, a)
        log.debug("planned moves=%d", len(moved))
        return moved

    def stats(self, plan: Plan) -> Dict[str, object]:
        by_to = Counter([to for (_, to) in plan.values() if to is not None])
        by_from = Counter([frm for (frm, _) in plan.values() if frm is not None])
        return {
            "moved_count": float(len(plan)),
            "by_to": dict(by_to),
            "by_from": dict(by_from),
        }

    def unexpected_moves(self, plan: Plan, removed: Collection[NodeID] = (), added: Collection[NodeID] = ()) -> Plan:
        """Moves that neither leave a removed node nor land on an added one.

        Empty for a ring that only remaps what the topology change forces.
        """
        return {
            k: (frm, to)
            for k, (frm, to) in plan.items()
            if frm not in removed and to not in added
        }
