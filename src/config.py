"""
Global configuration and constants for eGPU Switcher
"""

import os
from pathlib import Path

# Application metadata
APP_NAME = "eGPU Switcher"
APP_VERSION = "0.1.0"
APP_DESCRIPTION = "Switch Xorg between an internal GPU and a hot-pluggable eGPU"

# Xorg configuration artifacts
XORG_CONFIG_DIR = Path("/etc/X11")
XORG_LINK = XORG_CONFIG_DIR / "xorg.conf"
XORG_EGPU_NAME = "xorg.conf.egpu"
XORG_INTERNAL_NAME = "xorg.conf.internal"

# Services
DISPLAY_MANAGER_SERVICE = "display-manager.service"
DISPLAY_MANAGER_POLL_INTERVAL = 1.0  # seconds

# Hot-plug detection
PRESENCE_MAX_ATTEMPTS = 6
PRESENCE_INTERVAL = 0.5  # seconds

# PCI Class codes for display devices
VGA_CLASS_CODE = '0300'  # VGA compatible controller
DISPLAY_3D_CLASS_CODE = '0302'  # 3D controller
DISPLAY_CLASS_CODES = (VGA_CLASS_CODE, DISPLAY_3D_CLASS_CODE)

# Drivers
PROPRIETARY_DRIVER = "nvidia"
# Dependents first, base module last
PROPRIETARY_MODULES = ["nvidia_uvm", "nvidia_drm", "nvidia_modeset", "nvidia"]
PROPRIETARY_RELOAD_MODULES = ["nvidia", "nvidia_drm"]
DRIVER_SETTLE_SECONDS = 1.0

# Kernel interfaces
SYSFS_ROOT = Path("/sys")
PROC_MODULES = Path("/proc/modules")
GPU_DEVICE_NODE_PREFIXES = ("/dev/nvidia", "/dev/dri/")

# Logging
LOG_LEVEL = os.environ.get("EGPU_SWITCHER_LOG_LEVEL", "INFO")  # DEBUG, INFO, WARNING, ERROR
LOG_FILE = Path.home() / ".local" / "share" / "egpu-switcher" / "egpu-switcher.log"
