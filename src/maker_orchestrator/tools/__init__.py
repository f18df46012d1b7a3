"""MCP tool registration."""

from mcp.server.fastmcp import FastMCP

from ..config import Config
from .maker import register_maker_tools


def register_all_tools(mcp: FastMCP, config: Config) -> None:
	"""Register all MCP tools."""
	register_maker_tools(mcp, config)
