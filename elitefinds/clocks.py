"""
clocks.py — Pakistan and UK time helpers.

The business buys in Pakistan and sells in the UK, so activity timestamps
and the home dashboard clocks are shown in both zones.
"""

from datetime import datetime

import pytz

PKT_ZONE = pytz.timezone("Asia/Karachi")  # UTC+5, no DST
UK_ZONE = pytz.timezone("Europe/London")  # GMT/BST

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

CLOCKS = (
    ("Pakistan Time", PKT_ZONE),
    ("UK Time", UK_ZONE),
)


def now_utc():
    return datetime.now(pytz.utc)


def local_now(zone, now=None):
    return (now or now_utc()).astimezone(zone)


def today_pkt(now=None):
    """Current calendar date in Pakistan."""
    return local_now(PKT_ZONE, now).date()


def iso_instant(moment):
    return moment.astimezone(pytz.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def timestamps(now=None):
    """(utc instant, Pakistan local, UK local) strings for one moment."""
    now = now or now_utc()
    return (
        iso_instant(now),
        local_now(PKT_ZONE, now).strftime(TIMESTAMP_FORMAT),
        local_now(UK_ZONE, now).strftime(TIMESTAMP_FORMAT),
    )


def world_clocks(now=None):
    """Payload for the home dashboard clocks."""
    now = now or now_utc()
    clocks = []
    for label, zone in CLOCKS:
        local = local_now(zone, now)
        clocks.append({
            "label": label,
            "zone": zone.zone,
            "time": local.strftime("%H:%M:%S"),
            "date": local.strftime("%A, %d %B %Y"),
            "abbreviation": local.tzname(),
        })
    return clocks
