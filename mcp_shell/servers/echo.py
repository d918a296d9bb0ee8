"""
Echo server: the smallest tool server the shell can talk to.

One tool that hands its message straight back, and one readable text
resource. The test suite spawns it to drive the real stdio path.

    python -m mcp_shell.servers.echo
"""

from mcp_shell.server import ResourceHandler, StdioToolServer, ToolHandler


class EchoTool(ToolHandler):
    name = "echo"
    description = "Return the given message unchanged, along with its length."
    parameters = {
        "message": {"type": "string", "description": "Text to send back"},
    }
    required = ["message"]

    def handle(self, params: dict) -> dict:
        text = params.get("message", "")
        return {"echoed": text, "length": len(text)}


class ReadmeResource(ResourceHandler):
    uri = "echo://readme"
    name = "readme"
    description = "What this server does"

    def read(self) -> str:
        return "The echo server repeats whatever message it is given."


def build_server() -> StdioToolServer:
    server = StdioToolServer("echo")
    server.register(EchoTool())
    server.register_resource(ReadmeResource())
    return server


if __name__ == "__main__":
    build_server().run()
