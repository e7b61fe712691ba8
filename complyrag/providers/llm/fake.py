from __future__ import annotations

from typing import Iterable


class FakeCompletionProvider:
    """Scripted completions for tests and offline runs.

    Responses are consumed in order; once exhausted the default response is
    returned. An Exception instance in the script is raised instead of returned.
    """

    def __init__(self, response: str = "[]", script: Iterable[str | Exception] | None = None) -> None:
        self._response = response
        self._script = list(script or [])
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self._script:
            return self._response
        item = self._script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item
