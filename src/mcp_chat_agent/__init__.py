"""
MCP-Chat-Agent: chat service with dynamically registered MCP tools and
self-compacting conversation memory.
"""

__version__ = "0.1.0"
