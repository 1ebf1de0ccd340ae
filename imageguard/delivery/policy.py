"""
Access Policy

User-agent, referer and path checks for protected image requests.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from imageguard.config import DEFAULT_BLOCKED_USER_AGENTS, StorageLayout


logger = logging.getLogger(__name__)


def _hostname(value: str) -> str:
    value = value.strip().lower()
    if "://" in value:
        return (urlparse(value).hostname or "").lower()
    return value.split("/")[0].split(":")[0]


def host_matches(host: str, domain: str) -> bool:
    """Exact host or any subdomain of domain."""
    host, domain = _hostname(host), _hostname(domain)
    if not host or not domain:
        return False
    return host == domain or host.endswith("." + domain)


@dataclass
class AccessPolicy:
    """
    Request policy for the delivery gateway.

    - Empty user agents and any UA containing a blocked signature
      (case-insensitive) are rejected.
    - A missing referer is allowed (direct navigation). Otherwise the
      referer host must be the request host or an allowed domain.
    - The source path must be relative, free of parent references and
      under one of the allowed prefixes. The artifact namespace is never
      servable, whatever the prefixes say.
    """
    blocked_user_agents: List[str] = field(default_factory=lambda: list(DEFAULT_BLOCKED_USER_AGENTS))
    allowed_referer_domains: List[str] = field(default_factory=list)
    allowed_path_prefixes: List[str] = field(
        default_factory=lambda: ["products/", "uploads/", "images/"]
    )
    layout: StorageLayout = field(default_factory=StorageLayout)

    def check_user_agent(self, user_agent: Optional[str]) -> Tuple[bool, Optional[str]]:
        if not user_agent or not user_agent.strip():
            return False, "Missing user agent"

        lowered = user_agent.lower()
        for signature in self.blocked_user_agents:
            if signature.lower() in lowered:
                return False, f"Blocked user agent signature: {signature}"

        return True, None

    def check_referer(self, referer: Optional[str], request_host: Optional[str] = None) -> Tuple[bool, Optional[str]]:
        if not referer:
            return True, None

        allowed = list(self.allowed_referer_domains)
        if request_host:
            allowed.append(request_host)
        if not allowed:
            return True, None

        referer_host = _hostname(referer)
        if any(host_matches(referer_host, domain) for domain in allowed):
            return True, None

        return False, f"Referer not allowed: {referer_host or referer}"

    def check_path(self, source_path: str) -> Tuple[bool, Optional[str]]:
        if not source_path or source_path.startswith("/") or "\\" in source_path:
            return False, "Invalid path"

        if ".." in source_path.split("/"):
            return False, "Path traversal rejected"

        if self.layout.is_artifact_path(source_path):
            return False, f"Cache artifacts are not servable: {source_path}"

        if not any(source_path.startswith(prefix) for prefix in self.allowed_path_prefixes):
            return False, f"Path outside allowed prefixes: {source_path}"

        return True, None
