"""Shared fakes for the test suite."""

import asyncio
from unittest.mock import AsyncMock, MagicMock


class FakeCapMonster:
    """In-memory stand-in for the CapMonster HTTP API.

    Each endpoint answers from a queue; the last entry repeats forever.
    Entries that are exceptions are raised when the request is entered.
    """

    def __init__(self, create=None, results=None, delay=0.0, gate=None):
        self.answers = {
            "createTask": list(create or [{"errorId": 0, "taskId": 101}]),
            "getTaskResult": list(results or [{"status": "processing", "errorId": 0}]),
            "reportIncorrectTokenCaptcha": [{"errorId": 0, "status": "success"}],
            "getBalance": [{"errorId": 0, "balance": 12.5}],
        }
        self.delay = delay
        self.gate = gate
        self.calls = []

    def payloads(self, endpoint):
        return [payload for name, payload in self.calls if name == endpoint]

    def _next(self, endpoint):
        queue = self.answers[endpoint]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def post(self, url, json=None, **kwargs):
        endpoint = url.rsplit("/", 1)[-1]
        self.calls.append((endpoint, json))
        body = self._next(endpoint)

        async def _json(**kw):
            if self.gate is not None:
                await self.gate.wait()
            if self.delay and endpoint == "getTaskResult":
                await asyncio.sleep(self.delay)
            return body

        resp = MagicMock()
        resp.json = AsyncMock(side_effect=_json)
        cm = AsyncMock()
        if isinstance(body, Exception):
            cm.__aenter__ = AsyncMock(side_effect=body)
        else:
            cm.__aenter__ = AsyncMock(return_value=resp)
        cm.__aexit__ = AsyncMock(return_value=False)
        return cm

    def session(self):
        session = MagicMock()
        session.closed = False
        session.close = AsyncMock()
        session.post = MagicMock(side_effect=self.post)
        return session

