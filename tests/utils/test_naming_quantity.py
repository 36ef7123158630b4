import pytest

from discoblocks.errors import DeadlineExceeded, ParseError
from discoblocks.utils.deadline import Deadline
from discoblocks.utils.naming import (
    is_contains_all,
    render_finalizer,
    render_mount_point,
    render_resource_name,
)
from discoblocks.utils.quantity import GI, format_bytes, to_bytes


def test_resource_name_is_deterministic_and_dns_safe():
    a = render_resource_name("ebs.csi.aws.com", "data", "default")
    assert a == render_resource_name("ebs.csi.aws.com", "data", "default")
    assert a != render_resource_name("ebs.csi.aws.com", "data", "other")
    assert a.startswith("discoblocks-")
    assert len(a) <= 63
    assert a == a.lower()


def test_resource_name_rejects_missing_parts():
    with pytest.raises(ValueError):
        render_resource_name()
    with pytest.raises(ValueError):
        render_resource_name("a", None)


@pytest.mark.parametrize("pattern,index,expected", [
    ("/media/discoblocks/data-%d", 0, "/media/discoblocks/data-0"),
    ("/media/discoblocks/data-%d", 2, "/media/discoblocks/data-2"),
    ("/data", 0, "/data"),
    ("/data", 1, "/data-1"),
])
def test_render_mount_point(pattern, index, expected):
    assert render_mount_point(pattern, index) == expected


def test_selector_subset():
    assert is_contains_all({"app": "web", "tier": "fe"}, {"app": "web"})
    assert is_contains_all({"app": "web"}, {})
    assert is_contains_all(None, None)
    assert not is_contains_all({"app": "web"}, {"app": "db"})
    assert not is_contains_all({}, {"app": "web"})


def test_finalizer():
    assert render_finalizer("data") == "discoblocks.ondat.io/data"


def test_quantities():
    assert to_bytes("5Gi") == 5 * GI
    assert to_bytes("1G") == 10 ** 9
    assert to_bytes(1024) == 1024
    assert format_bytes(6 * GI) == "6Gi"
    assert format_bytes(1536 * 1024 ** 2) == "1536Mi"
    assert format_bytes(1000) == "1000"
    with pytest.raises(ParseError):
        to_bytes("lots")
    with pytest.raises(ParseError):
        to_bytes(None)


def test_deadline_with_fake_clock():
    now = [100.0]
    d = Deadline(60, clock=lambda: now[0])
    assert d.remaining() == 60
    assert d.timeout(cap=10) == 10
    now[0] = 159.5
    assert d.timeout(cap=10) == 0.5
    now[0] = 160.0
    assert d.expired()
    with pytest.raises(DeadlineExceeded):
        d.remaining()
