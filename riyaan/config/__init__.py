"""Runtime configuration loading"""
from .loader import load_config, load_config_raw, resolve_config_path

__all__ = ["load_config", "load_config_raw", "resolve_config_path"]
