#!/usr/bin/env python3
"""Local runner for the add-ons.

Loads a ``.env`` file and starts one add-on outside the Supervisor:

    python run_local.py ilert --once
    python run_local.py azure-ddns --config ./options.json
"""

import argparse
import importlib
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

ROOT = Path(__file__).parent.resolve()

ADDONS = {
    "azure-ddns": "azure_ddns.main",
    "eswater": "eswater.main",
    "ilert": "ilert_oncall.main",
}


def load_env(env_file: Optional[str]) -> Optional[Path]:
    path = Path(env_file) if env_file else ROOT / ".env"
    if not path.exists():
        return None
    load_dotenv(path)
    # Local runs usually only have a long-lived HA token
    if os.getenv("HA_API_TOKEN") and not os.getenv("SUPERVISOR_TOKEN"):
        os.environ["SUPERVISOR_TOKEN"] = os.environ["HA_API_TOKEN"]
    return path


def _print_config_summary(addon: str, env_path: Optional[Path]):
    print("=" * 60)
    print(f"{addon} add-on - Local Testing")
    print("=" * 60)
    print(f"  Environment: {env_path or '(no .env file, using existing environment)'}")
    print(f"  HA API URL: {os.getenv('HA_API_URL', '(not set)')}")
    print(f"  HA API Token: {'SET' if os.getenv('HA_API_TOKEN') or os.getenv('SUPERVISOR_TOKEN') else 'NOT SET'}")
    print(f"  MQTT Host: {os.getenv('MQTT_HOST', 'core-mosquitto')}")
    print(f"  MQTT Port: {os.getenv('MQTT_PORT', '1883')}")
    print(f"  RUN_ONCE: {os.getenv('RUN_ONCE', '0')}")
    print("=" * 60)
    print()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run an add-on locally")
    parser.add_argument("addon", choices=sorted(ADDONS), help="Add-on to run")
    parser.add_argument("--env", help="Path to .env file (default: ./.env)")
    args, addon_args = parser.parse_known_args(argv)

    env_path = load_env(args.env)
    _print_config_summary(args.addon, env_path)

    module = importlib.import_module(ADDONS[args.addon])
    try:
        return module.main(addon_args)
    except KeyboardInterrupt:
        print("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
