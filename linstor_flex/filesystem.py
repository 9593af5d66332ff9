import re
from dataclasses import dataclass
from typing import List

from plumbum import local, ProcessExecutionError

from .logging import logger
from .exceptions import (
    InvalidParameter,
    FilesystemProbeFailed,
    FilesystemConflict,
    LogDeviceNotFound,
    FormatFailed,
)


XFS = "xfs"
EXT4 = "ext4"

# Each filesystem family spells "overwrite whatever signature is there" differently
FORCE_FLAGS = {XFS: "-f", EXT4: "-F"}

FS_TYPE_KEY = "ID_FS_TYPE"

STRIPE_UNIT_RE = re.compile(r"\d+[kmg]?")


def parse_probe_output(output: str) -> str:
    """
    Extract the filesystem type from `blkid -o udev` output.
    No output means no filesystem, which is a perfectly normal state for a fresh device.
    """
    pairs = output.split()
    if not pairs:
        return ""

    attrs = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise FilesystemProbeFailed(device="", detail=f"couldn't parse filesystem data from {output!r}")
        attrs[key] = value

    if FS_TYPE_KEY not in attrs:
        raise FilesystemProbeFailed(device="", detail=f"couldn't find {FS_TYPE_KEY} in {attrs}")
    return attrs[FS_TYPE_KEY]


@dataclass
class FormatOptions:
    fs_type: str = EXT4
    block_size: int = 0
    force: bool = False
    xfs_data_su: str = ""
    xfs_data_sw: int = 0
    xfs_log_dev: str = ""

    def __post_init__(self):
        if self.fs_type == XFS and self.xfs_data_su and not STRIPE_UNIT_RE.fullmatch(self.xfs_data_su):
            raise InvalidParameter(
                param="xfsDataSU", value=self.xfs_data_su,
                tip="su must be a number, optionally suffixed by k, m or g",
            )

    def mkfs_args(self) -> List[str]:
        """
        Build the family specific mkfs arguments.
        The order is fixed: force flag, block size, then the xfs data/log sections.
        """
        args = []
        if self.force and self.fs_type in FORCE_FLAGS:
            args.append(FORCE_FLAGS[self.fs_type])

        if self.block_size:
            block_size = str(self.block_size)
            if self.fs_type == XFS:
                block_size = f"size={block_size}"
            args += ["-b", block_size]

        if self.fs_type == XFS:
            if self.xfs_data_su:
                args += ["-d", f"su={self.xfs_data_su}"]
            if self.xfs_data_sw:
                args += ["-d", f"sw={self.xfs_data_sw}"]
            if self.xfs_log_dev:
                args += ["-l", f"logdev={self.xfs_log_dev}"]
        return args


class FilesystemGuard:
    """Make sure a device carries the requested filesystem, never formatting over someone else's"""

    def detect_filesystem(self, device: str) -> str:
        # blkid exits non-zero with no output when there is no filesystem at all
        retcode, stdout, stderr = local.cmd.blkid["-o", "udev", device].run(retcode=None)
        if retcode != 0 and not stdout.strip():
            if stderr.strip():
                raise FilesystemProbeFailed(device=device, detail=stderr.strip(), retcode=retcode)
            return ""
        try:
            return parse_probe_output(stdout)
        except FilesystemProbeFailed as exc:
            raise FilesystemProbeFailed(device=device, detail=stdout.strip()) from exc

    def ensure_filesystem(self, device: str, options: FormatOptions):
        found = self.detect_filesystem(device)
        if found == options.fs_type:
            logger.info(f"{device} already carries a {found} filesystem")
            return

        if found:
            raise FilesystemConflict(device=device, found=found, requested=options.fs_type)

        if options.xfs_log_dev and not local.path(options.xfs_log_dev).exists():
            raise LogDeviceNotFound(log_device=options.xfs_log_dev, device=device)

        mkfs = local.cmd.mkfs[("-t", options.fs_type, *options.mkfs_args(), device)]
        logger.info(f"Creating {options.fs_type} filesystem on {device}: {mkfs}")
        try:
            mkfs & logger.pipe_info("mkfs >>")
        except ProcessExecutionError as exc:
            raise FormatFailed(fs_type=options.fs_type, device=device, detail=exc.stderr or exc.stdout)
