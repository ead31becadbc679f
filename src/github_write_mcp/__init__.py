"""github-write-mcp: guarded GitHub write operations exposed as MCP tools."""

__version__ = "0.1.0"
