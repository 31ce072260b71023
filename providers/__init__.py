"""Catalog of upstream providers known to the gateway and their defaults."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ProviderDefault:
    """Seed row inserted for a known provider that is missing from storage."""

    name: str
    base_url: str
    enabled: bool = True
    extra: dict[str, Any] = field(default_factory=dict)

    def config_json(self) -> dict[str, Any]:
        return {"base_url": self.base_url, **self.extra}


KNOWN_PROVIDERS: tuple[ProviderDefault, ...] = (
    ProviderDefault("openai", "https://api.openai.com"),
    ProviderDefault("claude", "https://api.anthropic.com"),
    ProviderDefault("aistudio", "https://generativelanguage.googleapis.com"),
    ProviderDefault("vertexexpress", "https://aiplatform.googleapis.com"),
    ProviderDefault("vertex", "https://aiplatform.googleapis.com"),
    ProviderDefault("geminicli", "https://generativelanguage.googleapis.com"),
    ProviderDefault("claudecode", "https://api.anthropic.com"),
    ProviderDefault("codex", "https://chatgpt.com/backend-api/codex"),
    ProviderDefault("antigravity", "https://daily-cloudcode-pa.sandbox.googleapis.com"),
    ProviderDefault("nvidia", "https://integrate.api.nvidia.com"),
    ProviderDefault("deepseek", "https://api.deepseek.com"),
)

KNOWN_PROVIDER_NAMES: tuple[str, ...] = tuple(item.name for item in KNOWN_PROVIDERS)


__all__ = [
    "KNOWN_PROVIDERS",
    "KNOWN_PROVIDER_NAMES",
    "ProviderDefault",
]
