"""
Switch workflow: detect the eGPU, resolve the mode, repoint xorg.conf
"""

from typing import Optional

import config
from backend.gpu_detector import GPUDetector
from backend.mode_resolver import Mode, OutputConnectivity, SwitchDecision, resolve_mode, scan_output_connectivity
from backend.presence import await_presence
from backend.xorg_config import XorgConfigStore
from utils.logger import logger


class Switcher:
    """Glue between detection, resolution and the Xorg symlink"""

    def __init__(self, store: Optional[XorgConfigStore] = None, detector: Optional[GPUDetector] = None,
                 presence_attempts: int = config.PRESENCE_MAX_ATTEMPTS,
                 presence_interval: float = config.PRESENCE_INTERVAL):
        self.store = store or XorgConfigStore()
        self.detector = detector or GPUDetector()
        self.presence_attempts = presence_attempts
        self.presence_interval = presence_interval

    def decide(self, requested: Mode, override: bool = False) -> SwitchDecision:
        external_exists = self.store.exists(Mode.EXTERNAL)
        internal_exists = self.store.exists(Mode.INTERNAL)

        hardware_present = False
        driver = None
        connectivity = None
        if external_exists:
            egpu = self.store.load(Mode.EXTERNAL)
            driver = egpu.driver
            presence = await_presence(
                egpu.bus_address,
                self.detector.list_raw_display_devices,
                max_attempts=self.presence_attempts,
                interval=self.presence_interval,
            )
            hardware_present = bool(presence)
            logger.info(f"eGPU {egpu.bus_address} {'detected' if hardware_present else 'not detected'}")
            if hardware_present and driver != config.PROPRIETARY_DRIVER:
                connectivity = scan_output_connectivity(egpu.bus_address, self.detector.sysfs_root)

        return resolve_mode(
            requested,
            hardware_present=hardware_present,
            driver=driver,
            connectivity=connectivity or OutputConnectivity(),
            override=override,
            external_config_exists=external_exists,
            internal_config_exists=internal_exists,
        )

    def switch(self, requested: Mode, override: bool = False) -> SwitchDecision:
        decision = self.decide(requested, override=override)
        if self.store.active_mode() is decision.final_mode:
            logger.info(f"Already using {decision.final_mode.value}, nothing to do")
            return decision
        self.store.apply(decision)
        return decision
