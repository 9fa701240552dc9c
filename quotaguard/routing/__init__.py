"""Key routing across state nodes."""

from quotaguard.routing.ring import ConsistentHashRing, RingSnapshot, ring_hash

__all__ = ["ConsistentHashRing", "RingSnapshot", "ring_hash"]
