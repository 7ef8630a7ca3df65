"""Control-plane API client and resource models."""

from .client import BASE_URL, RemoteStateClient
from .models import (
    AccessApplication,
    AccessPolicy,
    AccessPolicyRule,
    Account,
    DnsRecord,
    DnsRecordSpec,
    IngressRule,
    TunnelConfiguration,
    TunnelDescriptor,
    Zone,
)
from .retry import RetryPolicy

__all__ = [
    "BASE_URL",
    "RemoteStateClient",
    "RetryPolicy",
    "AccessApplication",
    "AccessPolicy",
    "AccessPolicyRule",
    "Account",
    "DnsRecord",
    "DnsRecordSpec",
    "IngressRule",
    "TunnelConfiguration",
    "TunnelDescriptor",
    "Zone",
]
