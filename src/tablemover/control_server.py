"""Unix socket server accepting pause/resume commands for a running job."""

import asyncio
import os
from typing import Optional

import structlog

from tablemover.exceptions import ConfigError
from tablemover.watchdogs import PauseGate
from utils.logging import get_logger

RESPONSES = {
    "pause": "task has been paused\n",
    "resume": "task will be resumed\n",
}
UNKNOWN_COMMAND = "unknown command\n"
MAX_COMMAND_BYTES = 128


class ControlServer:
    """Serves one command per connection: read a line, reply once, close.

    Example:
        echo pause | nc -U /tmp/127.0.0.1-app-events.sock
    """

    def __init__(
        self,
        socket_path: str,
        gate: PauseGate,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize control server.

        Args:
            socket_path: Path of the unix socket file
            gate: Pause gate driven by the commands
            logger: Optional logger instance
        """
        self.socket_path = socket_path
        self.gate = gate
        self.logger = logger or get_logger("control_server")
        self.server: Optional[asyncio.AbstractServer] = None

    async def start(self) -> None:
        """Start listening on the socket.

        A leftover socket file with no listener is replaced; one that still
        accepts connections belongs to another running job and is left alone.

        Raises:
            ConfigError: If the socket is in use or cannot be created
        """
        if await self._socket_in_use():
            raise ConfigError(
                "Control socket already in use by another job",
                context={"socket": self.socket_path},
            )
        try:
            self.server = await asyncio.start_unix_server(self._handle_client, path=self.socket_path)
        except OSError as e:
            raise ConfigError(
                f"Failed to listen on control socket: {e}",
                context={"socket": self.socket_path},
            ) from e
        self.logger.info("Control server started", socket=self.socket_path)

    async def _socket_in_use(self) -> bool:
        if not os.path.exists(self.socket_path):
            return False
        try:
            _, writer = await asyncio.open_unix_connection(self.socket_path)
        except (ConnectionRefusedError, FileNotFoundError):
            self.logger.info("Replacing stale control socket", socket=self.socket_path)
            return False
        writer.close()
        await writer.wait_closed()
        return True

    async def stop(self) -> None:
        """Stop the server and remove the socket file it created."""
        if self.server is None:
            return
        self.server.close()
        await self.server.wait_closed()
        self.server = None
        try:
            os.remove(self.socket_path)
        except FileNotFoundError:
            pass
        self.logger.info("Control server stopped", socket=self.socket_path)

    def handle_command(self, command: str) -> str:
        """Apply ``command`` to the pause gate and return the reply line."""
        command = command.strip()
        if command == "pause":
            self.gate.pause()
        elif command == "resume":
            self.gate.resume()
        return RESPONSES.get(command, UNKNOWN_COMMAND)

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            data = await reader.read(MAX_COMMAND_BYTES)
            response = self.handle_command(data.decode("utf-8", errors="replace"))
            writer.write(response.encode("utf-8"))
            await writer.drain()
        except (ConnectionError, OSError) as e:
            self.logger.warning("Control connection failed", error=str(e))
        finally:
            writer.close()
