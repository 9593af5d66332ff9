import re

from plumbum import local
from easypy.humanize import yesno_to_bool


def get_mount(target_path):
    import psutil
    target_path = str(local.path(target_path))
    for m in psutil.disk_partitions(all=True):
        if m.mountpoint == target_path:
            return m


def normalize_mount_options(mount_options: str):
    """Convert mount options provided as a string (eg. "[noatime, discard]") into a list, keeping their order."""
    s = re.sub(r"[\[\]]", "", mount_options).replace(",", " ")
    options = []
    for p in s.split():
        if p not in options:
            options.append(p)
    return options


def to_bool(value) -> bool:
    """Options arrive either as JSON booleans or as strings ("true", "yes", "1"...)"""
    if isinstance(value, bool):
        return value
    return yesno_to_bool(str(value).strip())
