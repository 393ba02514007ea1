"""
homiegraf - Config and Cache Locations

settings.json and the error log belong to the user who started the
bridge. Under sudo that is SUDO_USER, not root.
"""

import logging
import os
import pwd
from pathlib import Path

logger = logging.getLogger(__name__)

APP_NAME = "homiegraf"


def get_real_home() -> Path:
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user:
        try:
            return Path(pwd.getpwnam(sudo_user).pw_dir)
        except KeyError:
            logger.debug("SUDO_USER %r has no passwd entry, using $HOME", sudo_user)
    return Path.home()


def _user_dir(xdg_var: str, fallback: str) -> Path:
    # XDG_* under sudo describes root's session, so only honor it without sudo
    base = os.environ.get(xdg_var)
    if base and os.path.isabs(base) and not os.environ.get("SUDO_USER"):
        return Path(base) / APP_NAME
    return get_real_home() / fallback / APP_NAME


def get_config_dir() -> Path:
    return _user_dir("XDG_CONFIG_HOME", ".config")


def get_cache_dir() -> Path:
    return _user_dir("XDG_CACHE_HOME", ".cache")
