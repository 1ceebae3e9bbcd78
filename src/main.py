#!/usr/bin/env python3
"""
eGPU Switcher - Main Entry Point
"""

import argparse
import os
import sys
from typing import List, Optional

import config
from backend.bus_address import parse_kernel_form, strip_domain
from backend.errors import DeviceNotPresent, EGPUSwitcherError
from backend.gpu_detector import GPUDetector
from backend.hot_removal import HotRemovalOrchestrator, deferred_signals, spawn_detached_removal
from backend.mode_resolver import Mode
from backend.presence import await_presence
from backend.switcher import Switcher
from backend.xorg_config import XorgConfigStore
from utils.logger import logger


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="egpu-switcher",
        description=config.APP_DESCRIPTION,
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {config.APP_VERSION}")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("detect", help="list display devices")

    setup_p = sub.add_parser("setup", help="generate the Xorg configuration for both GPUs")
    setup_p.add_argument("--egpu", required=True, help="eGPU bus address, e.g. 0000:05:00.0")
    setup_p.add_argument("--internal", required=True, help="internal GPU bus address, e.g. 00:02.0")
    setup_p.add_argument("--egpu-driver", help="Xorg driver for the eGPU (default: bound kernel driver)")
    setup_p.add_argument("--internal-driver", help="Xorg driver for the internal GPU (default: bound kernel driver)")

    switch_p = sub.add_parser("switch", help="switch between eGPU and internal GPU")
    switch_p.add_argument("mode", choices=[m.value for m in Mode], help="auto, egpu or internal")
    switch_p.add_argument("--override", action="store_true",
                          help="use the eGPU even if none of its outputs reports a display")

    remove_p = sub.add_parser("remove", help="detach the eGPU so it can be unplugged")
    remove_p.add_argument("--worker", action="store_true", help=argparse.SUPPRESS)

    cleanup_p = sub.add_parser("cleanup", help="remove the xorg.conf symlink")
    cleanup_p.add_argument("--hard", action="store_true", help="also delete the generated configuration files")

    return parser.parse_args(argv)


def cmd_detect(args, detector: GPUDetector) -> int:
    catalog = detector.list_display_devices()
    if not catalog:
        logger.warning("No display devices found")
        return 1
    for address, record in sorted(catalog.items(), key=lambda item: item[0].to_kernel_form()):
        driver = detector.driver_in_use(address) or "no driver"
        print(f"{address.to_kernel_form()}  {address.to_xorg_busid():<12}  [{driver}]  {record.display_name}")
    return 0


def cmd_setup(args, detector: GPUDetector, store: XorgConfigStore) -> int:
    egpu = parse_kernel_form(strip_domain(args.egpu))
    internal = parse_kernel_form(strip_domain(args.internal))
    if egpu == internal:
        logger.error("eGPU and internal GPU must be different devices")
        return 1

    catalog = detector.list_display_devices()
    if len(catalog) < 2:
        logger.error(f"Found {len(catalog)} display device(s), at least 2 are required")
        return 1
    for address in (egpu, internal):
        if address not in catalog:
            logger.error(f"No display device at {address}")
            return 1

    egpu_driver = args.egpu_driver or detector.driver_in_use(egpu)
    internal_driver = args.internal_driver or detector.driver_in_use(internal)
    if not egpu_driver or not internal_driver:
        logger.error("Could not determine the drivers, pass --egpu-driver/--internal-driver")
        return 1

    store.write(Mode.EXTERNAL, egpu, egpu_driver)
    store.write(Mode.INTERNAL, internal, internal_driver)
    logger.info(f"eGPU: {catalog[egpu].display_name}")
    logger.info(f"Internal: {catalog[internal].display_name}")
    return 0


def cmd_switch(args, switcher: Switcher) -> int:
    decision = switcher.switch(Mode.parse(args.mode), override=args.override)
    print(f"{decision.final_mode.value} ({decision.reason.value})")
    return 0


def cmd_remove(args, detector: GPUDetector, store: XorgConfigStore) -> int:
    adapter = store.load(Mode.EXTERNAL)
    if not args.worker:
        if not await_presence(adapter.bus_address, detector.list_raw_display_devices):
            raise DeviceNotPresent(f"eGPU {adapter.bus_address} is not connected")
        spawn_detached_removal()
        return 0

    exit_code = 1
    try:
        with deferred_signals():
            outcome = HotRemovalOrchestrator().run(adapter)
            exit_code = 0 if outcome.succeeded else 1
    except KeyboardInterrupt:
        # Held back during the sequence, delivered once the mask is restored
        logger.warning("Interrupted during eGPU removal; the sequence had already finished")
    return exit_code


def cmd_cleanup(args, store: XorgConfigStore) -> int:
    store.cleanup(hard=args.hard)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point"""
    args = parse_args(argv)

    if os.geteuid() != 0:
        logger.error("egpu-switcher must be run as root")
        return 1

    detector = GPUDetector()
    store = XorgConfigStore()

    try:
        if args.command == "detect":
            return cmd_detect(args, detector)
        if args.command == "setup":
            return cmd_setup(args, detector, store)
        if args.command == "switch":
            return cmd_switch(args, Switcher(store=store, detector=detector))
        if args.command == "remove":
            return cmd_remove(args, detector, store)
        if args.command == "cleanup":
            return cmd_cleanup(args, store)
    except EGPUSwitcherError as e:
        logger.error(str(e))
        return 1
    except OSError as e:
        logger.exception(f"{args.command} failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
