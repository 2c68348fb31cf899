"""
MCP Server Registry - where the portfolio MCP server lives and how to describe it.

The native and agents modes do not connect to the MCP server themselves; they
hand its URL to OpenAI, which connects from the public internet. The URL must
therefore be publicly reachable, and ``HostedMcpServer.validated_url`` refuses
loopback and private addresses before any request is sent.
"""

from __future__ import annotations

import ipaddress

from dataclasses import dataclass
from typing import Literal, TypedDict
from urllib.parse import urljoin, urlsplit

from api.middleware.exception_handlers import ConfigurationError
from core.constants import Settings
from utils.logger import logger

#: Notice text shown when the MCP URL cannot be reached by OpenAI.
PUBLIC_URL_REQUIRED_MESSAGE = (
    "Configuration Error: MCP server must be publicly accessible. Please check your deployment URL."
)


class HostedMcpToolConfig(TypedDict, total=False):
    """Hosted MCP tool definition accepted by the Responses API and HostedMCPTool."""

    type: Literal["mcp"]
    server_label: str
    server_url: str
    server_description: str
    require_approval: Literal["never", "always"]


def _is_private_host(host: str) -> bool:
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        # Regular DNS name
        return False
    return (
        address.is_loopback
        or address.is_private
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
    )


def ensure_public_url(url: str) -> str:
    """Return ``url`` unchanged if a remote service could reach it.

    Raises:
        ConfigurationError: If the host is missing, localhost, or a non-public IP literal.
    """
    host = (urlsplit(url).hostname or "").lower()
    if not host or _is_private_host(host):
        logger.warning("Rejected non-public MCP server URL", mcp_host=host or None)
        raise ConfigurationError(PUBLIC_URL_REQUIRED_MESSAGE, details={"mcp_host": host or "missing"})
    return url


@dataclass(frozen=True, slots=True)
class HostedMcpServer:
    """Location and description of the MCP server handed to OpenAI."""

    label: str
    description: str
    base_url: str
    endpoint: str

    @property
    def url(self) -> str:
        return urljoin(self.base_url, self.endpoint)

    def validated_url(self) -> str:
        """Full endpoint URL, checked for public reachability."""
        return ensure_public_url(self.url)

    def tool_config(self, include_description: bool = True) -> HostedMcpToolConfig:
        """Build the hosted MCP tool definition (validates the URL first)."""
        config: HostedMcpToolConfig = {
            "type": "mcp",
            "server_label": self.label,
            "server_url": self.validated_url(),
            "require_approval": "never",
        }
        if include_description:
            config["server_description"] = self.description
        return config


def build_hosted_server(settings: Settings) -> HostedMcpServer:
    """Describe the configured MCP server."""
    return HostedMcpServer(
        label=settings.mcp_server_label,
        description=settings.mcp_server_description,
        base_url=settings.mcp_server_base_url,
        endpoint=settings.chat_mcp_server_endpoint,
    )


__all__ = [
    "PUBLIC_URL_REQUIRED_MESSAGE",
    "HostedMcpServer",
    "HostedMcpToolConfig",
    "build_hosted_server",
    "ensure_public_url",
]
