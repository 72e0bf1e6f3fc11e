"""
Taskly MCP operations server.
"""
