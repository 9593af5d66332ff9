import re
from time import sleep

from plumbum import local

from .logging import logger
from .exceptions import DevicePathUnavailable, UnsupportedDeviceNaming


class DevicePathResolver:
    """
    Map resources to the kernel block device of their volume 0, and back.
    Device paths are never cached: minors can be reassigned, so every lookup
    goes to the control plane.
    """

    def __init__(self, client, prefix="/dev/drbd", interval=2.0):
        self.client = client
        self.prefix = prefix
        self.interval = interval
        self._device_re = re.compile(re.escape(prefix) + r"(\d+)")

    @classmethod
    def from_config(cls, client, config):
        return cls(client, prefix=config.device_prefix, interval=config.retry_interval)

    def compose_device_path(self, minor: int) -> str:
        return f"{self.prefix}{minor}"

    def extract_minor(self, device: str) -> int:
        match = self._device_re.fullmatch(device)
        if not match:
            raise UnsupportedDeviceNaming(device=device, prefix=self.prefix)
        return int(match.group(1))

    def resolve_device_path(self, resource: str, verify: bool = True) -> str:
        """
        Return the device path of the resource's volume 0, or an empty string if the
        control plane has no minor for it (yet).
        With `verify`, a path that does not exist on this host raises `DevicePathUnavailable`.
        """
        volume = self.client.list_resources(resource).volume(resource, 0)
        if not volume:
            return ""

        device_path = self.compose_device_path(volume.minor)
        if verify and not local.path(device_path).exists():
            raise DevicePathUnavailable(resource=resource, reason=f"{device_path} does not exist", device=device_path)
        return device_path

    def wait_for_device_path(self, resource: str, max_retries: int) -> str:
        """Poll until the device of `resource` shows up on this host"""
        last_error = None
        for attempt in range(1, max_retries + 1):
            try:
                device_path = self.resolve_device_path(resource)
            except DevicePathUnavailable as exc:
                device_path, last_error = "", exc
            else:
                last_error = None
            if device_path:
                return device_path
            logger.debug(f"Device of {resource!r} not available yet (attempt {attempt}/{max_retries})")
            sleep(self.interval)
        if last_error:
            raise last_error
        raise DevicePathUnavailable(
            resource=resource, reason="the control plane has no volume 0 minor for it", attempts=max_retries
        )

    def resolve_resource_from_device(self, device: str) -> str:
        """
        Find the resource owning `device`.
        Returns an empty string when no volume uses that minor - callers treat it as unknown.
        """
        minor = self.extract_minor(device)
        return self.client.list_resources().owner_of_minor(minor)
