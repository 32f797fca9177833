"""
Cloudflare tunnel tooling.

Validates the ingress configuration, wraps the cloudflared binary and
checks tunnel health. The tunnel transport itself is cloudflared's.
"""

from .cli import MOCK_TUNNEL_ID, TunnelCLI
from .config import (
    DnsRecord,
    IngressRule,
    TunnelConfig,
    TunnelConfigError,
    TunnelValidation,
    install_credentials,
    load_tunnel_config,
    parse_tunnel_config,
    set_tunnel_id,
    validate_credentials,
)
from .health import TunnelHealthChecker, TunnelReconnector, parse_tunnel_metrics

__all__ = [
    "MOCK_TUNNEL_ID",
    "TunnelCLI",
    "DnsRecord",
    "IngressRule",
    "TunnelConfig",
    "TunnelConfigError",
    "TunnelValidation",
    "install_credentials",
    "load_tunnel_config",
    "parse_tunnel_config",
    "set_tunnel_id",
    "validate_credentials",
    "TunnelHealthChecker",
    "TunnelReconnector",
    "parse_tunnel_metrics",
]
