"""Serving surfaces for docatlas: the MCP stdio server and the HTTP API."""
