"""Randomized pacing for page interactions.

The human-like pauses go through ``Pacer.random_delay`` and are scaled by the
owner's ``DELAY_SCALE``, so a scale of 0 turns them off. ``Pacer.wait`` is
for delays that control timing rather than look, such as response polling,
and is never scaled.
"""
import asyncio
import random


def typing_delay() -> float:
    """Per-character delay in seconds, 40-80ms with an occasional hesitation."""
    delay = random.uniform(40, 80)
    if random.random() < 0.1:
        delay += random.uniform(100, 300)
    return delay / 1000


def jitter_timeout(base_ms: float, variability_percent: float = 20) -> int:
    variability = base_ms * variability_percent / 100
    return int(base_ms + random.uniform(-variability, variability))


class Pacer:
    def __init__(self, scale: float = 1.0):
        self.scale = scale

    async def random_delay(self, min_ms: int, max_ms: int):
        delay = random.randint(min_ms, max_ms) / 1000
        await asyncio.sleep(delay * self.scale)

    async def short_delay(self):
        await self.random_delay(200, 600)

    async def thinking_delay(self):
        await self.random_delay(800, 2000)

    async def considering_delay(self):
        await self.random_delay(1500, 4000)

    async def jitter_before_action(self):
        await self.random_delay(100, 400)

    async def typing_pause(self):
        await asyncio.sleep(typing_delay() * self.scale)

    async def wait(self, min_seconds: float, max_seconds: float):
        await asyncio.sleep(random.uniform(min_seconds, max_seconds))
