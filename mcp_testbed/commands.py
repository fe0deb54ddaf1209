"""
MCP Testbed - Command Dispatch
================================
Maps a command's action name to its handler and builds the
command_response sent back on the channel.

Built-in actions:
    get_status      -> server status, uptime, active session/channel counts
    list_resources  -> resource list from the ResourceProvider
    update_resource -> requires resourceId and data, echoes resourceId back

Every response echoes the command's requestId verbatim so clients can
match replies to requests on the full-duplex channel.

Usage:
    dispatcher = CommandDispatcher(registry, StaticResourceProvider())
    response = dispatcher.dispatch(command, session_record)

    # Add an action
    dispatcher.register("echo", lambda cmd, session: cmd.data)
"""

import time
from typing import Any, Callable

from mcp_testbed.errors import CommandValidationError, UnknownCommand
from mcp_testbed.protocol import CommandMessage, make_command_response, utc_now_iso
from mcp_testbed.resources import ResourceProvider
from mcp_testbed.sessions import SessionRecord, SessionRegistry


# A handler returns the response "data" payload, or raises one of the
# errors above to produce a success:false response.
CommandHandler = Callable[[CommandMessage, SessionRecord], Any]


class CommandDispatcher:
    """
    Action table for authenticated channels.

    Attributes:
        registry:         Session registry, read by get_status.
        provider:         Resource data source.
        started_at:       Monotonic start time used for uptime.
        connection_count: Callable returning the number of open channels.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        provider: ResourceProvider,
        connection_count: Callable[[], int] | None = None,
    ):
        self.registry = registry
        self.provider = provider
        self.started_at = time.monotonic()
        self.connection_count = connection_count if connection_count is not None else (lambda: 0)
        self._handlers: dict[str, CommandHandler] = {
            "get_status": self._get_status,
            "list_resources": self._list_resources,
            "update_resource": self._update_resource,
        }

    @property
    def actions(self) -> list[str]:
        """Names of all registered actions."""
        return sorted(self._handlers)

    def register(self, action: str, handler: CommandHandler) -> None:
        """Add or replace the handler for an action."""
        self._handlers[action] = handler

    def dispatch(self, command: CommandMessage, session: SessionRecord) -> dict[str, Any]:
        """
        Run a command and build its command_response.

        Never raises: validation failures, unknown actions and handler
        errors all become success:false responses.

        Args:
            command: The decoded command message.
            session: Session bound to the channel the command arrived on.

        Returns:
            The command_response message dict.
        """
        action = command.action
        print(f"[CMD] {action} from {session.username}", flush=True)

        try:
            handler = self._handlers.get(action) if isinstance(action, str) else None
            if handler is None:
                raise UnknownCommand()
            data = handler(command, session)
        except (CommandValidationError, UnknownCommand) as e:
            return make_command_response(command, success=False, error=e.message)
        except Exception as e:
            print(f"[ERROR] Command {action!r} failed: {e}", flush=True)
            return make_command_response(command, success=False, error="Command failed")

        return make_command_response(command, success=True, data=data)

    # -- Built-in handlers -----------------------------------------------------

    def _get_status(self, command: CommandMessage, session: SessionRecord) -> dict[str, Any]:
        return {
            "status": "online",
            "uptime": round(time.monotonic() - self.started_at, 3),
            "activeSessions": self.registry.size(),
            "activeChannels": self.connection_count(),
            "serverTime": utc_now_iso(),
        }

    def _list_resources(self, command: CommandMessage, session: SessionRecord) -> dict[str, Any]:
        return {"resources": self.provider.list_resources()}

    def _update_resource(self, command: CommandMessage, session: SessionRecord) -> dict[str, Any]:
        resource_id = command.resource_id
        data = command.data
        if resource_id is None or resource_id == "" or data is None:
            raise CommandValidationError("Missing resource ID or update data")

        message = self.provider.update_resource(resource_id, data)
        return {"resourceId": resource_id, "message": message}
