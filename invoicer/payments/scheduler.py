"""Delayed poll queue backed by a Redis sorted set.

Members are JSON jobs scored by the time they become due. ``claim_due``
removes each member with ZREM before returning it, so when several workers
race for the same job only one of them gets it.
"""
import json
import time


class PollScheduler:
    def __init__(self, redis_conn, queue_name="payments:polls", clock=time.time):
        self.redis = redis_conn
        self.queue_name = queue_name
        self.clock = clock

    @staticmethod
    def _member(job):
        return json.dumps(job, sort_keys=True)

    def schedule(self, job, delay=0.0):
        self.redis.zadd(self.queue_name, {self._member(job): self.clock() + delay})

    def cancel(self, job):
        return bool(self.redis.zrem(self.queue_name, self._member(job)))

    def claim_due(self, limit=10):
        members = self.redis.zrangebyscore(self.queue_name, "-inf", self.clock(), start=0, num=limit)
        claimed = []
        for member in members:
            if self.redis.zrem(self.queue_name, member):
                claimed.append(json.loads(member))
        return claimed
