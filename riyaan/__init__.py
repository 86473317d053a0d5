"""
Riyaan - resilient multi-provider agent runtime
"""

__version__ = "0.1.0"

from .agents import AgentConfig, AgentRuntime
from .config import load_config

__all__ = ["AgentConfig", "AgentRuntime", "load_config", "__version__"]
