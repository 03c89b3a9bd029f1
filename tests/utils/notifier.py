import asyncio
from collections import defaultdict, deque
from typing import Callable, Optional

from ranked.notifier import Notifier

# Scripted answer of a player that never responds
SILENT = object()

DEFAULT_ROOM_CODE = "ABCD1"


class ScriptedNotifier(Notifier):
    """
    Stands in for the chat layer during tests.

    Answers are taken from a per player script in order. A scripted answer can
    be a string, `TIMEOUT`, `SILENT` or a function of the offered options.
    Once a player's script runs out the first option is picked, and free text
    prompts are answered with a valid room code.
    """

    def __init__(
        self,
        default_choice: Optional[Callable[[int, list], object]] = None,
        default_freeform: object = DEFAULT_ROOM_CODE
    ):
        self._scripts: dict[int, deque] = defaultdict(deque)
        self.default_choice = default_choice or (lambda user_id, options: options[0])
        self.default_freeform = default_freeform
        # Simulated seconds a player takes before answering
        self.delay = 0
        self.prompts: list[tuple[int, str, list]] = []
        self.messages: list[tuple[int, dict]] = []

    def script(self, user_id: int, *answers: object) -> None:
        self._scripts[user_id].extend(answers)

    def remaining(self, user_id: int) -> list:
        return list(self._scripts[user_id])

    async def present_choice(self, recipient_id, prompt, options, timeout):
        self.prompts.append((recipient_id, prompt, list(options)))
        script = self._scripts[recipient_id]
        if script:
            answer = script.popleft()
        else:
            answer = self.default_choice(recipient_id, list(options))
        if callable(answer):
            answer = answer(list(options))
        return await self._answer(answer)

    async def present_freeform(self, recipient_id, prompt, validator, timeout):
        self.prompts.append((recipient_id, prompt, []))
        script = self._scripts[recipient_id]
        answer = script.popleft() if script else self.default_freeform
        return await self._answer(answer)

    async def notify(self, recipient_id, message):
        self.messages.append((recipient_id, message))

    async def _answer(self, answer):
        if answer is SILENT:
            await asyncio.get_running_loop().create_future()
        if self.delay:
            await asyncio.sleep(self.delay)
        # Let other prompts be posted before this one completes
        await asyncio.sleep(0)
        return answer

    def commands(self, recipient_id: Optional[int] = None) -> list[str]:
        return [
            message["command"]
            for user_id, message in self.messages
            if recipient_id is None or user_id == recipient_id
        ]

    def sent(self, command: str) -> list[tuple[int, dict]]:
        return [
            (user_id, message)
            for user_id, message in self.messages
            if message["command"] == command
        ]
