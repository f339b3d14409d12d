import hashlib
import json
from typing import List, Optional, Tuple

import redis

from room_doc_chat.logger import GLOBAL_LOGGER as log
from room_doc_chat.utils.config_loader import RedisConfig


def hash_str(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def build_redis_client(cfg: RedisConfig) -> redis.Redis:
    return redis.Redis(
        host=cfg.host,
        port=cfg.port,
        db=cfg.db,
        decode_responses=True,
        socket_timeout=cfg.socket_timeout,
        socket_connect_timeout=cfg.socket_timeout,
    )


def _index_set_key(index_name: str) -> str:
    """
    Redis SET holding every entry key written for one index, so a write to the
    index can drop all of them.
    example : ret:index:documents
    """
    return f"ret:index:{index_name}"


def _entry_key(index_name: str, scope: str, norm_query: str) -> str:
    """
    example : retq:documents:room:A:f7e9a1b04e<query_hash>
    The value is the JSON list of [chunk_id, score] pairs returned for that query.
    """
    return f"retq:{index_name}:{scope}:{hash_str(norm_query)}"


def normalize_query(q: str) -> str:
    """strip spaces, lowercase, collapse multiple spaces"""
    return " ".join(q.lower().strip().split())


class RetrievalCache:
    """
    Caches the chunk ids and scores a retrieval returned for (index, scope, query).

    Best effort: every redis failure is logged and treated as a miss, so the
    cache can never turn a working search into a failing one.
    """

    def __init__(self, client: redis.Redis, ttl: int = 86400):
        self.client = client
        self.ttl = ttl

    def get(self, index_name: str, scope: str, query: str) -> Optional[List[Tuple[str, float]]]:
        key = _entry_key(index_name, scope, normalize_query(query))
        try:
            cached = self.client.get(key)
        except redis.RedisError as e:
            log.warning("Failed to fetch cached retrieval | error=%s", e)
            return None

        if cached:
            log.debug("Retrieval cache HIT | key=%s", key)
            return [(chunk_id, float(score)) for chunk_id, score in json.loads(cached)]

        log.debug("Retrieval cache MISS | key=%s", key)
        return None

    def store(
        self, index_name: str, scope: str, query: str, hits: List[Tuple[str, float]]
    ) -> None:
        key = _entry_key(index_name, scope, normalize_query(query))
        try:
            self.client.setex(key, self.ttl, json.dumps([list(h) for h in hits]))
            idx_key = _index_set_key(index_name)
            self.client.sadd(idx_key, key)
            self.client.expire(idx_key, self.ttl)
            log.debug("Stored retrieval entry | key=%s | chunks=%d", key, len(hits))
        except redis.RedisError as e:
            log.warning("Failed to store retrieval entry | error=%s", e)

    def invalidate_index(self, index_name: str) -> None:
        """Drop every cached retrieval of an index after new chunks were written."""
        idx_key = _index_set_key(index_name)
        try:
            keys = list(self.client.smembers(idx_key))
            if keys:
                self.client.delete(*keys)
            self.client.delete(idx_key)
            log.info("Retrieval cache invalidated | index=%s | entries=%d", index_name, len(keys))
        except redis.RedisError as e:
            log.warning("Failed to invalidate retrieval cache | index=%s | error=%s", index_name, e)
