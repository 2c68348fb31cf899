"""
Models Module - Pydantic models and typed records shared across the relay.

Modules:
    chat_models: Inbound chat request validation and conversation records
    event_models: Stream events and their SSE encoding
    mcp_models: MCP tool descriptors and normalized results
    sdk_models: Classified Agents SDK stream events
    error_models: Error codes and REST error responses
    schemas: Response models for the REST endpoints
"""
