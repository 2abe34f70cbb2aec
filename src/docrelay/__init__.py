"""Token-gated document server with a single-session agent chat relay."""

from .config import AgentConfig, ChatConfig, DocsConfig, Settings

__all__ = ["AgentConfig", "ChatConfig", "DocsConfig", "Settings"]
