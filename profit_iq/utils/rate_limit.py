"""In-process sliding-window limiter for the public email ingest endpoint."""

import ipaddress
import time
from collections import deque
from threading import Lock
from typing import Iterable, Optional

from fastapi import Request

from profit_iq.core.config import get_settings


class SlidingWindowRateLimiter:
    def __init__(self, *, max_buckets: int = 50_000, prune_interval_seconds: int = 60) -> None:
        self._hits: dict[str, deque[float]] = {}
        self._lock = Lock()
        self._max_buckets = max_buckets
        self._prune_every = max(1, int(prune_interval_seconds))
        self._pruned_at = 0.0

    @staticmethod
    def _expire(hits: deque, cutoff: float) -> None:
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def allow(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int]:
        """Count a hit for *key*; returns ``(allowed, hits_in_window)``."""
        if limit <= 0 or window_seconds <= 0:
            return True, 0
        now = time.monotonic()
        cutoff = now - window_seconds
        with self._lock:
            if len(self._hits) > self._max_buckets or now - self._pruned_at >= self._prune_every:
                stale = []
                for bucket_key, bucket in self._hits.items():
                    self._expire(bucket, cutoff)
                    if not bucket:
                        stale.append(bucket_key)
                for bucket_key in stale:
                    del self._hits[bucket_key]
                self._pruned_at = now

            hits = self._hits.setdefault(key, deque())
            self._expire(hits, cutoff)
            if len(hits) >= limit:
                return False, len(hits)
            hits.append(now)
            return True, len(hits)

    def bucket_count(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._pruned_at = 0.0


rate_limiter = SlidingWindowRateLimiter()


def _is_trusted(ip: str, cidrs: Iterable[str]) -> bool:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return ip in cidrs
    for cidr in cidrs:
        try:
            network = ipaddress.ip_network(cidr, strict=False)
        except ValueError:
            if cidr == ip:
                return True
            continue
        if address in network:
            return True
    return False


def get_client_ip(request: Request, trusted_proxy_cidrs: Optional[list[str]] = None) -> Optional[str]:
    """Client address used as the ingest rate-limit key.

    Forwarding headers count only when the direct peer is a trusted proxy.
    """
    peer = request.client.host if request.client else None
    if trusted_proxy_cidrs is None:
        trusted_proxy_cidrs = get_settings().trusted_proxy_cidrs
    if not peer or not trusted_proxy_cidrs or not _is_trusted(peer, trusted_proxy_cidrs):
        return peer

    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    # Rightmost entry was appended by our own proxy.
    hops = [hop.strip() for hop in (request.headers.get("x-forwarded-for") or "").split(",") if hop.strip()]
    return hops[-1] if hops else peer
