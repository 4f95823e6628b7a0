"""
config.py — Application settings persisted to a local XML file.

The file holds three entries under a <config> root:

    <config>
      <connectionString></connectionString>
      <gbpToPkrRate>350.0</gbpToPkrRate>
      <platformFees>15,20,25</platformFees>
    </config>

Reads never fail: a missing or corrupt file is replaced by the default
document, and a missing or unparseable entry yields its default value.
Writes are best effort and only log on failure.
"""

import logging
import math
import os
import threading
import xml.etree.ElementTree as ET
from pathlib import Path

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / "data" / "config.xml"

CONNECTION_STRING = "connectionString"
GBP_TO_PKR_RATE = "gbpToPkrRate"
PLATFORM_FEES = "platformFees"

DEFAULT_GBP_TO_PKR_RATE = 350.0
DEFAULT_PLATFORM_FEES = "15,20,25"

DEFAULTS = {
    CONNECTION_STRING: "",
    GBP_TO_PKR_RATE: str(DEFAULT_GBP_TO_PKR_RATE),
    PLATFORM_FEES: DEFAULT_PLATFORM_FEES,
}


def default_config_path():
    """Config location, overridable with ELITEFINDS_CONFIG."""
    return Path(os.environ.get("ELITEFINDS_CONFIG", str(DEFAULT_CONFIG_PATH)))


class ConfigStore:
    """Key/value settings backed by config.xml."""

    def __init__(self, path=None):
        self.path = Path(path) if path else default_config_path()
        self._lock = threading.RLock()

    # -- raw access ---------------------------------------------------------

    def get(self, key):
        """Return the stored text for key, or its default when missing/blank."""
        if key not in DEFAULTS:
            raise KeyError(key)
        with self._lock:
            try:
                root = self._load().getroot()
                node = root.find(key)
                if node is not None and node.text is not None and node.text.strip():
                    return node.text.strip()
            except Exception as e:
                logger.error("Error reading %s from %s: %s", key, self.path, e)
        return DEFAULTS[key]

    def set(self, key, value):
        """Create or overwrite one entry, keeping the others."""
        if key not in DEFAULTS:
            raise KeyError(key)
        with self._lock:
            try:
                tree = self._load()
                root = tree.getroot()
                node = root.find(key)
                if node is None:
                    node = ET.SubElement(root, key)
                node.text = "" if value is None else str(value)
                self._save(tree)
            except Exception:
                logger.exception("Error writing %s to %s", key, self.path)

    # -- typed accessors ----------------------------------------------------

    def connection_string(self):
        value = self.get(CONNECTION_STRING).strip()
        return value or None

    def exchange_rate(self):
        raw = self.get(GBP_TO_PKR_RATE)
        try:
            rate = float(raw)
        except (TypeError, ValueError):
            logger.warning("Invalid exchange rate %r in config, using %.1f", raw, DEFAULT_GBP_TO_PKR_RATE)
            return DEFAULT_GBP_TO_PKR_RATE
        if not (math.isfinite(rate) and rate > 0):
            logger.warning("Exchange rate %r in config is not a positive number, using %.1f", raw, DEFAULT_GBP_TO_PKR_RATE)
            return DEFAULT_GBP_TO_PKR_RATE
        return rate

    def platform_fees(self):
        return self.get(PLATFORM_FEES)

    def platform_fee_options(self):
        """Fee percentages from the comma separated list, bad items skipped."""
        options = []
        for item in self.platform_fees().split(","):
            item = item.strip()
            if not item:
                continue
            try:
                options.append(float(item))
            except ValueError:
                logger.warning("Skipping invalid platform fee %r", item)
        return options

    def set_connection_string(self, connection_string):
        self.set(CONNECTION_STRING, (connection_string or "").strip())

    def set_exchange_rate(self, rate):
        self.set(GBP_TO_PKR_RATE, str(float(rate)))

    def set_platform_fees(self, fees):
        self.set(PLATFORM_FEES, fees if fees is not None else DEFAULT_PLATFORM_FEES)

    # -- file handling ------------------------------------------------------

    def _load(self):
        try:
            return ET.parse(self.path)
        except (OSError, ET.ParseError) as e:
            if self.path.exists():
                logger.warning("Config file %s is unreadable (%s), recreating defaults", self.path, e)
            tree = self._default_tree()
            self._save(tree)
            return tree

    def _default_tree(self):
        root = ET.Element("config")
        for key, value in DEFAULTS.items():
            ET.SubElement(root, key).text = value
        return ET.ElementTree(root)

    def _save(self, tree):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tree.write(self.path, encoding="utf-8", xml_declaration=True)
