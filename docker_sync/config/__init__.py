"""
Config Module — User settings and config-file locations.
"""

from .settings import Settings, get_user_config_dir, write_json_atomic

__all__ = ["Settings", "get_user_config_dir", "write_json_atomic"]
