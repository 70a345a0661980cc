import logging
from typing import Awaitable, Callable

from signage_player.config import COMMAND_TTL_SEC
from signage_player.schemas.command import CommandIn, DeviceCommand
from signage_player.services.store import LocalStore

logger = logging.getLogger(__name__)

CommandHandler = Callable[[], Awaitable[None]]
AckCallback = Callable[[str], Awaitable[bool]]

CONSUMED_KEY_PREFIX = "device_command_consumed_"


def consumed_key(command_id: str) -> str:
    return f"{CONSUMED_KEY_PREFIX}{command_id}"


class CommandDispatcher:
    """
    Runs one-shot device commands.

    A command id is marked consumed before its handler runs, so a redelivery
    of the same command (push replayed after reconnect, duplicate pull) is
    acknowledged again but never executed twice.
    """

    def __init__(
        self,
        store: LocalStore,
        ack: AckCallback,
        handlers: dict[DeviceCommand, CommandHandler] | None = None,
        ttl_sec: int = COMMAND_TTL_SEC,
    ) -> None:
        self._store = store
        self._ack = ack
        self._handlers: dict[DeviceCommand, CommandHandler] = dict(handlers or {})
        self._ttl_sec = ttl_sec

    def register(self, command: DeviceCommand, handler: CommandHandler) -> None:
        self._handlers[command] = handler

    def was_consumed(self, command_id: str) -> bool:
        return self._store.cache_get(consumed_key(command_id)) is not None

    async def dispatch(self, command: CommandIn) -> bool:
        """Execute ``command`` unless already consumed. Returns True when it ran."""
        if self.was_consumed(command.id):
            logger.info("Command %s already consumed, acknowledging only", command.id)
            await self._ack(command.id)
            return False

        self._store.cache_put(
            consumed_key(command.id),
            {"command": command.command.value},
            ttl_sec=self._ttl_sec,
        )
        handler = self._handlers.get(command.command)
        ran = False
        if handler is None:
            logger.warning("No handler for command %s", command.command.value)
        else:
            logger.info("Running command %s (%s)", command.command.value, command.id)
            try:
                await handler()
                ran = True
            except Exception:
                logger.exception("Command %s (%s) failed", command.command.value, command.id)
        await self._ack(command.id)
        return ran
