"""MCP stdio server exposing the coordination tools to agents."""

from __future__ import annotations

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from beepboop.config.schema import Config
from beepboop.logging import get_logger
from beepboop.tools import CoordinationTools, ToolResult

log = get_logger("mcp")

INSTRUCTIONS = (
    "Directory work coordination with beep/boop marker files. Check a directory "
    "with check_status before working in it, claim it with update_boop, and "
    "release it with end_work when done."
)


def _text(result: ToolResult) -> str:
    if result.is_error:
        raise ToolError(result.text)
    return result.text


def build_mcp_server(config: Config, tools: CoordinationTools | None = None) -> FastMCP:
    """Create the FastMCP server with the seven coordination tools."""
    tools = tools or CoordinationTools.from_config(config)
    mcp = FastMCP(name="beepboop", instructions=INSTRUCTIONS)

    @mcp.tool(name="create_beep")
    async def create_beep(directory: str, message: str | None = None) -> str:
        """Create a beep file to signal that work in a directory is complete.

        Fails if an agent currently holds the directory; use end_work instead.
        """
        return _text(await tools.create_beep(directory, message))

    @mcp.tool(name="update_boop")
    async def update_boop(
        directory: str, agent_id: str, work_description: str | None = None
    ) -> str:
        """Claim a directory for agent_id (or refresh an existing claim)."""
        return _text(await tools.update_boop(directory, agent_id, work_description))

    @mcp.tool(name="end_work")
    async def end_work(directory: str, agent_id: str, message: str | None = None) -> str:
        """Release agent_id's claim: remove the boop file and create a beep file."""
        return _text(await tools.end_work(directory, agent_id, message))

    @mcp.tool(name="check_status")
    async def check_status(
        directory: str,
        max_age_hours: float | None = None,
        auto_clean_stale: bool = False,
        new_agent_id: str | None = None,
        new_work_description: str | None = None,
    ) -> str:
        """Report the coordination state of a directory.

        A claim older than max_age_hours (default 24) is stale. With
        auto_clean_stale=true a stale claim is removed and, when new_agent_id is
        given, the directory is claimed for that agent.
        """
        return _text(
            await tools.check_status(
                directory,
                max_age_hours=max_age_hours,
                auto_clean_stale=auto_clean_stale,
                new_agent_id=new_agent_id,
                new_work_description=new_work_description,
            )
        )

    @mcp.tool(name="update_user")
    async def update_user(message_id: str, update_content: str) -> str:
        """Send a follow-up to the thread or user tied to a captured message."""
        return _text(await tools.update_user(message_id, update_content))

    @mcp.tool(name="initiate_conversation")
    async def initiate_conversation(
        platform: str,
        content: str,
        channel_id: str | None = None,
        agent_id: str | None = None,
    ) -> str:
        """Start a conversation on slack or discord and wait for the first reply.

        Blocks up to the configured deadline (5 minutes by default). On timeout
        the returned message id can be used with update_user later.
        """
        return _text(
            await tools.initiate_conversation(
                platform, content, channel_id=channel_id, agent_id=agent_id
            )
        )

    @mcp.tool(name="check_listener_status")
    async def check_listener_status(include_config: bool = False) -> str:
        """Show delegation settings and test connectivity to the shared listener."""
        return _text(await tools.check_listener_status(include_config))

    return mcp


def run_stdio(config: Config) -> None:
    """Serve the tools over stdio until the client disconnects."""
    log.info("Starting MCP stdio server")
    build_mcp_server(config).run(transport="stdio")
