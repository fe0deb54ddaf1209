"""
MCP Testbed - Error Taxonomy
==============================
Exceptions raised by the registry, the channel gateway and the command
dispatcher. Every one of them is converted into a structured response at
the boundary where it is detected; none is allowed to reach the listener.

    AuthError              -> HTTP 401
    RequestFormatError     -> HTTP 400
    RouteNotFound          -> HTTP 404
    SessionInvalid         -> auth_response {success: false}
    MessageFormatError     -> error {message: "Invalid message format"}
    MessageTooLarge        -> error {message: "Message too large"}
    CommandValidationError -> command_response {success: false}
    UnknownCommand         -> command_response {success: false}
"""


class McpError(Exception):
    """Base class for all MCP Testbed errors."""

    message = "Internal error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class AuthError(McpError):
    message = "Invalid credentials"


class RequestFormatError(McpError):
    message = "Invalid request format"


class RouteNotFound(McpError):
    message = "Endpoint not found"


class SessionInvalid(McpError):
    message = "Invalid session token"


class MessageFormatError(McpError):
    message = "Invalid message format"


class MessageTooLarge(McpError):
    message = "Message too large"


class CommandValidationError(McpError):
    message = "Missing required command fields"


class UnknownCommand(McpError):
    message = "Unknown command"
