"""MCP server exposing CRM synchronization as tools."""
