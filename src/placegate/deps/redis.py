from redis.asyncio import Redis

from placegate.config import Settings


def create_redis(settings: Settings) -> Redis:
    # only built when RATE_LIMIT_BACKEND=redis; owned and closed by the app
    return Redis.from_url(settings.redis_url, decode_responses=True)
