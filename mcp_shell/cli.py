"""
mcp-shell: chat with an LLM that can use MCP tools.

This is the script that closes the loop. It:
1. Loads configuration (defaults → JSON file → environment)
2. Connects to the default tool server and discovers its tools
3. Reads lines from the console; commands are handled locally,
   anything else is sent to the model

Usage:
    # Start with built-in defaults (local Ollama)
    mcp-shell

    # Use a config file
    mcp-shell config.json

    # Show debug output (pings, HTTP requests)
    mcp-shell config.json --verbose
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys

from mcp_shell.config import AppConfig, load_config
from mcp_shell.connector import ToolProviderConnector
from mcp_shell.errors import McpShellError
from mcp_shell.gateway import ProviderGateway
from mcp_shell.manager import ConnectionManager
from mcp_shell.models import Usage
from mcp_shell.orchestrator import ConversationOrchestrator, ExchangeResult, Session
from mcp_shell.registry import ToolRegistry

logger = logging.getLogger(__name__)

HELP_TEXT = """
Available Commands:
-----------------
help               - Show this help message
servers            - List available MCP servers
use <server-key>   - Set the active MCP server
enable <server>    - Enable an MCP server
disable <server>   - Disable an MCP server
tools              - List tools for the active MCP server
resources          - List resources for the active MCP server
call <tool> <args> - Call a tool with JSON arguments
resource <uri>     - Read a resource from the active MCP server
clear              - Clear chat history
config             - Show current configuration
exit/quit          - Exit the application

Anything else will be sent as a message to the LLM.
"""


def format_usage(usage: Usage | None) -> str:
    if usage is None:
        return ""
    lines = ["Token Usage:"]
    if usage.prompt_tokens is not None:
        lines.append(f"- Prompt tokens: {usage.prompt_tokens}")
    if usage.completion_tokens is not None:
        lines.append(f"- Completion tokens: {usage.completion_tokens}")
    if usage.total_tokens is not None:
        lines.append(f"- Total tokens: {usage.total_tokens}")
    return "\n".join(lines) if len(lines) > 1 else ""


class Shell:
    """Line-oriented front end over a Session and its orchestrator."""

    def __init__(
        self,
        session: Session,
        orchestrator: ConversationOrchestrator,
        manager: ConnectionManager,
        out=None,
    ):
        self.session = session
        self.orchestrator = orchestrator
        self.manager = manager
        self.out = out or sys.stdout

    @property
    def connector(self) -> ToolProviderConnector:
        return self.session.registry.connector

    def echo(self, text: str = "") -> None:
        print(text, file=self.out)

    def _require_active(self):
        server = self.session.active_server
        if server is None:
            self.echo("No active MCP server. Please set an active server first.")
        return server

    # ── Commands ──────────────────────────────────────────

    def list_servers(self) -> None:
        self.echo("\nAvailable MCP Servers:")
        self.echo("---------------------")
        for index, (key, server, active) in enumerate(self.session.servers(), start=1):
            status = "Enabled" if server.enabled else "Disabled"
            marker = "* " if active else "  "
            self.echo(f"{marker}{index}. {key}: {server.name} ({status})")
        self.echo()

    def use(self, key: str) -> None:
        count = self.session.use_server(key)
        self.echo(f"Active MCP server set to: {self.session.active_server.name}")
        self.echo(f"Loaded {count} tools.")

    def toggle(self, key: str, enable: bool) -> None:
        was_active = self.session.active_server
        self.session.set_server_enabled(key, enable)
        server = self.session.config.servers[key]
        self.echo(f"Server '{server.name}' {'enabled' if enable else 'disabled'}.")
        if was_active is not None and self.session.active_server is None:
            self.echo("Active server cleared.")

    def list_tools(self) -> None:
        server = self._require_active()
        if server is None:
            return
        tools = self.connector.list_tools(server)
        self.echo(f"\nTools for {server.name}:")
        self.echo("-------------------------")
        for index, tool in enumerate(tools, start=1):
            self.echo(f"{index}. {tool.name}")
            self.echo(f"   Description: {tool.description}")
        self.echo()

    def list_resources(self) -> None:
        server = self._require_active()
        if server is None:
            return
        resources = self.connector.list_resources(server)
        self.echo(f"\nResources for {server.name}:")
        self.echo("-------------------------")
        for index, resource in enumerate(resources, start=1):
            self.echo(f"{index}. {resource.uri}")
            if resource.name:
                self.echo(f"   Name: {resource.name}")
            if resource.description:
                self.echo(f"   Description: {resource.description}")
        self.echo()

    def call(self, tool_name: str, raw_args: str) -> None:
        server = self._require_active()
        if server is None:
            return
        try:
            arguments = json.loads(raw_args)
        except ValueError:
            self.echo("Error parsing arguments. Please provide valid JSON.")
            return
        result = self.connector.call_tool(server, tool_name, arguments)
        self.echo("\nTool Result:")
        self.echo("------------")
        self.echo(json.dumps(result, indent=2))

    def read_resource(self, uri: str) -> None:
        server = self._require_active()
        if server is None:
            return
        result = self.connector.read_resource(server, uri)
        self.echo("\nResource Content:")
        self.echo("-----------------")
        self.echo(json.dumps(result, indent=2))

    def send(self, message: str) -> ExchangeResult:
        result = self.orchestrator.send(message)
        if result.tool_call is not None:
            self.echo(f"\nLLM wants to use tool: {result.tool_call.tool}")
            self.echo(f"Arguments: {json.dumps(result.tool_call.arguments, indent=2)}")
            if result.tool_error:
                self.echo(f"Error executing tool: {result.tool_error}")
            else:
                self.echo(f"Tool result: {json.dumps(result.tool_result, indent=2, default=str)}")
        if result.error:
            self.echo(f"Error sending message to LLM: {result.error}")
            return result
        self.echo(f"\nLLM: {result.text}\n")
        usage = format_usage(result.usage)
        if usage:
            self.echo(usage + "\n")
        return result

    # ── Dispatch ──────────────────────────────────────────

    def process(self, line: str) -> bool:
        """Handle one input line. Returns False when the shell should exit."""
        tokens = line.strip().split(" ")
        cmd = tokens[0].lower()
        rest = " ".join(tokens[1:]).strip()

        if not cmd:
            return True
        if cmd in ("exit", "quit"):
            return False

        try:
            if cmd == "help":
                self.echo(HELP_TEXT)
            elif cmd == "servers":
                self.list_servers()
            elif cmd in ("use", "enable", "disable"):
                if not rest:
                    self.echo(f"Usage: {cmd} <server-key>")
                elif cmd == "use":
                    self.use(rest)
                else:
                    self.toggle(rest, cmd == "enable")
            elif cmd == "tools":
                self.list_tools()
            elif cmd == "resources":
                self.list_resources()
            elif cmd == "call":
                if len(tokens) > 2:
                    self.call(tokens[1], " ".join(tokens[2:]))
                else:
                    self.echo("Usage: call <tool-name> <json-arguments>")
            elif cmd == "resource":
                if rest:
                    self.read_resource(rest)
                else:
                    self.echo("Usage: resource <uri>")
            elif cmd == "clear":
                self.session.clear_history()
                self.echo("Chat history cleared.")
            elif cmd == "config":
                self.echo("\nCurrent Configuration:")
                self.echo("---------------------")
                self.echo(json.dumps(self.session.config.to_dict(), indent=2))
            else:
                self.send(line)
        except McpShellError as e:
            self.echo(f"Error: {e}")
        except Exception as e:
            logger.debug("Command failed", exc_info=True)
            self.echo(f"Error running '{cmd}': {e}")
        return True

    def run(self) -> None:
        config = self.session.config
        self.echo("\nMCP Shell started.")
        self.echo(f"LLM provider: {config.llm.provider}")
        if self.session.active_server:
            self.echo(f"Active MCP server: {self.session.active_server.name}")
            if len(self.session.registry):
                self.echo(f"Loaded {len(self.session.registry)} tools for LLM to use.")
            else:
                self.echo("No tools loaded. LLM will not be able to use tools.")
        else:
            self.echo("No active MCP server.")
        self.echo('\nType "help" for available commands.')

        while True:
            try:
                line = input("> ")
            except EOFError:
                break
            if not self.process(line):
                break


def build_shell(config: AppConfig) -> tuple[Shell, ProviderGateway]:
    """Wire manager → connector → registry → gateway → orchestrator."""
    manager = ConnectionManager()
    registry = ToolRegistry(ToolProviderConnector(manager))
    session = Session(config, registry)
    gateway = ProviderGateway(config.llm, registry)
    orchestrator = ConversationOrchestrator(gateway, session)

    default = config.default_server
    if default and default in config.servers:
        try:
            session.use_server(default)
            print(f"Default MCP server set to: {config.servers[default].name}")
        except McpShellError as e:
            logger.warning(f"Default server not activated: {e}")

    return Shell(session, orchestrator, manager), gateway


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Chat with an LLM that can call MCP tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=HELP_TEXT,
    )
    parser.add_argument("config", nargs="?", default=None, help="Path to a JSON config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_config(args.config)

    try:
        shell, gateway = build_shell(config)
    except McpShellError as e:
        print(f"Error starting MCP shell: {e}")
        return 1

    # Graceful shutdown on Ctrl+C
    def shutdown(sig, frame):
        print("\nShutting down MCP servers...")
        shell.manager.stop_all()
        gateway.close()
        sys.exit(0)
    signal.signal(signal.SIGINT, shutdown)

    try:
        shell.run()
    finally:
        shell.manager.stop_all()
        gateway.close()
        print("\nMCP servers stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
