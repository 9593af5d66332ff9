from uuid import UUID

import pytest

from linstor_flex.flex_types import (
    Resource,
    ResourceList,
    VolumeRecord,
    AssignmentRecord,
    uniq,
    subtract,
    parse_state,
)


class TestResource:

    def test_unconfigured(self):
        res = Resource()
        assert UUID(res.name)
        assert res.auto_place == 1
        assert res.auto_placed
        assert not res.placement_requested
        assert res.size_kib == 4096
        assert res.storage_pool == "DfltStorPool"
        assert res.diskless_storage_pool == "DfltDisklessStorPool"
        assert not res.encryption

    def test_generated_names_differ(self):
        assert Resource().name != Resource().name

    def test_auto_place(self):
        res = Resource(name="Agamemnon", auto_place=5, size_kib=10000)
        assert res.name == "Agamemnon"
        assert res.auto_place == 5
        assert res.size_kib == 10000
        assert res.placement_requested

    def test_manual_placement(self):
        res = Resource(name="r0", node_list=["host1", "host2", "host1"], client_list=["host2", "host3", "host3"])
        assert res.node_list == ["host1", "host2"]
        assert res.client_list == ["host3"]
        assert res.auto_place == 0
        assert not res.auto_placed
        assert res.placement_requested
        assert res.has_local_storage_on("host1")
        assert not res.has_local_storage_on("host3")

    def test_explicit_pools(self):
        res = Resource(name="r0", storage_pool="ssd", diskless_storage_pool="clients")
        assert res.storage_pool == "ssd"
        assert res.diskless_storage_pool == "clients"


@pytest.mark.parametrize("items, expected", [
    (["foo", "bar", "foo", "baz", "baz"], ["foo", "bar", "baz"]),
    (["fee", "fie", "fo", "fum"], ["fee", "fie", "fo", "fum"]),
    ([], []),
])
def test_uniq(items, expected):
    assert uniq(items) == expected


@pytest.mark.parametrize("exclude, items, expected", [
    (["foo", "bar", "foo", "baz", "baz"], ["foo", "bar", "baz"], []),
    (["foo", "bar", "foo", "baz", "baz"], ["fee", "fie", "fo", "fum"], ["fee", "fie", "fo", "fum"]),
    (["cat", "dog", "monkey"], ["pineapple", "peach", "dog", "mango"], ["pineapple", "peach", "mango"]),
])
def test_subtract(exclude, items, expected):
    assert subtract(exclude, items) == expected


@pytest.mark.parametrize("state, expected", [
    ("connect|deploy", {"connect", "deploy"}),
    ("deploy|connect|diskless", {"connect", "deploy", "diskless"}),
    ("", set()),
    ("  connect||deploy\n", {"connect", "deploy"}),
])
def test_parse_state(state, expected):
    assert parse_state(state) == expected


@pytest.mark.parametrize("current, target, settled, client_only", [
    ("connect|deploy", "connect|deploy", True, False),
    ("deploy|connect", "connect|deploy", True, False),
    ("connect|deploy|diskless", "connect|deploy|diskless", True, True),
    ("", "connect|deploy", False, False),
    ("connect", "connect|deploy|diskless", False, True),
])
def test_assignment_record(current, target, settled, client_only):
    record = AssignmentRecord("test0", "node0", parse_state(current), parse_state(target))
    assert record.is_settled == settled
    assert record.is_client_only == client_only


class TestResourceList:

    @pytest.fixture
    def listing(self):
        return ResourceList(
            defined=["test0", "test1", "test2"],
            volumes=[
                VolumeRecord("test0", 0, 100),
                VolumeRecord("test1", 0, 101),
                VolumeRecord("test1", 1, 103),
                VolumeRecord("test2", 0, None),
            ],
            assignments=[
                AssignmentRecord("test0", "node0", parse_state("connect|deploy"), parse_state("connect|deploy")),
                AssignmentRecord("test0", "node1", parse_state(""), parse_state("connect|deploy")),
            ],
        )

    def test_is_defined(self, listing):
        assert listing.is_defined("test1")
        assert not listing.is_defined("test9")

    def test_assignment(self, listing):
        assert listing.assignment("test0", "node0").is_settled
        assert not listing.assignment("test0", "node1").is_settled
        assert listing.assignment("test0", "node2") is None
        assert listing.assignment("test1", "node0") is None

    def test_volume(self, listing):
        assert listing.volume("test1").minor == 101
        assert listing.volume("test1", 1).minor == 103
        # a volume without a minor is as good as no volume
        assert listing.volume("test2") is None
        assert listing.volume("test9") is None

    @pytest.mark.parametrize("minor, expected", [(100, "test0"), (101, "test1"), (7001, ""), (104, "")])
    def test_owner_of_minor(self, listing, minor, expected):
        assert listing.owner_of_minor(minor) == expected
