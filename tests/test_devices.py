import pytest

from linstor_flex.devices import DevicePathResolver
from linstor_flex.exceptions import DevicePathUnavailable, UnsupportedDeviceNaming


@pytest.fixture
def client(fake_control_plane):
    client = fake_control_plane()
    client.add("test0", minor=100)
    client.add("test1", minor=101)
    client.add("test2")
    return client


@pytest.fixture
def resolver(client, tmp_path):
    """A resolver looking for devices under a temporary directory"""
    return DevicePathResolver(client, prefix=str(tmp_path / "drbd"), interval=1)


@pytest.mark.parametrize("device, minor", [
    ("/dev/drbd100", 100),
    ("/dev/drbd5123", 5123),
    ("/dev/drbd0", 0),
])
def test_extract_minor(client, device, minor):
    resolver = DevicePathResolver(client)
    assert resolver.extract_minor(device) == minor
    assert resolver.compose_device_path(minor) == device


@pytest.mark.parametrize("device", ["/dev/sda1", "/dev/drbd", "/dev/drbd12a", "/dev/drbd/by-res/test0/0", ""])
def test_unsupported_device(client, device):
    with pytest.raises(UnsupportedDeviceNaming):
        DevicePathResolver(client).extract_minor(device)


class TestResolveDevicePath:

    def test_existing(self, resolver, tmp_path):
        (tmp_path / "drbd100").touch()
        assert resolver.resolve_device_path("test0") == str(tmp_path / "drbd100")

    def test_missing(self, resolver):
        with pytest.raises(DevicePathUnavailable):
            resolver.resolve_device_path("test0")

    def test_unverified(self, resolver, tmp_path):
        assert resolver.resolve_device_path("test1", verify=False) == str(tmp_path / "drbd101")

    @pytest.mark.parametrize("resource", ["test2", "test9"])
    def test_no_minor(self, resolver, resource):
        assert resolver.resolve_device_path(resource) == ""


class TestWaitForDevicePath:

    def test_available(self, resolver, tmp_path, no_sleep):
        (tmp_path / "drbd100").touch()
        assert resolver.wait_for_device_path("test0", 3) == str(tmp_path / "drbd100")
        no_sleep.devices.assert_not_called()

    def test_shows_up(self, resolver, tmp_path, no_sleep):
        no_sleep.devices.side_effect = lambda _: (tmp_path / "drbd100").touch()
        assert resolver.wait_for_device_path("test0", 3) == str(tmp_path / "drbd100")
        no_sleep.devices.assert_called_once_with(1)

    def test_never_shows_up(self, resolver, no_sleep):
        with pytest.raises(DevicePathUnavailable) as exc:
            resolver.wait_for_device_path("test0", 3)
        assert "does not exist" in exc.value.render(color=False)
        assert no_sleep.devices.call_count == 3

    def test_no_minor(self, resolver, no_sleep):
        with pytest.raises(DevicePathUnavailable):
            resolver.wait_for_device_path("test2", 2)
        assert no_sleep.devices.call_count == 2


@pytest.mark.parametrize("device, resource", [
    ("/dev/drbd100", "test0"),
    ("/dev/drbd101", "test1"),
    ("/dev/drbd7001", ""),
])
def test_resolve_resource_from_device(client, device, resource):
    assert DevicePathResolver(client).resolve_resource_from_device(device) == resource


def test_resolve_resource_from_foreign_device(client):
    with pytest.raises(UnsupportedDeviceNaming):
        DevicePathResolver(client).resolve_resource_from_device("/dev/sda1")
