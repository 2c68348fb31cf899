"""
Integrations Module - External System Integrations
===================================================

Provides the connection to the portfolio MCP server, both directly and as a
hosted tool handed to OpenAI.

Modules:
    mcp_client: Persistent MCP client used by proxy mode and the tool catalog
    mcp_registry: Hosted MCP server description and public-URL validation

Key Components:

MCP Tool Client (mcp_client.py):
    - One lazily opened ClientSession over streamable HTTP
    - Lock-guarded connection with a handshake timeout
    - Tool results normalized to ordered text blocks
    - Failed sessions torn down so the next call reconnects

Hosted MCP Server (mcp_registry.py):
    - Endpoint URL resolved from CHAT_MCP_SERVER_URL or SITE_URL
    - Localhost and private addresses rejected before OpenAI is called
"""
