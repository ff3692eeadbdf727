from hitl_relay.db.redis import close_redis, get_redis, init_redis, ping_redis

__all__ = [
    "close_redis",
    "get_redis",
    "init_redis",
    "ping_redis",
]
