from __future__ import annotations

import pytest
import yaml

from conftest import b64, make_kubeconfig
from lke_driver.errors import ValidationError
from lke_driver.kubeconfig import decode_kubeconfig, parse_kubeconfig

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


def _encode(doc: dict) -> str:
    return b64(yaml.safe_dump(doc))


class TestParseKubeconfig:
    def test_current_context(self):
        access = parse_kubeconfig(make_kubeconfig(server="https://lke.example:443", token="tok"))

        assert access.endpoint == "https://lke.example:443"
        assert access.ca_data == b64("ca-cert")
        assert access.username == ""
        assert access.cert_data == ""

    def test_client_certificate_user(self):
        doc = {
            "clusters": [{"name": "c", "cluster": {"server": "https://c:443"}}],
            "users": [{
                "name": "u",
                "user": {
                    "client-certificate-data": b64("cert"),
                    "client-key-data": b64("key"),
                    "username": "admin",
                    "password": "hunter2",
                },
            }],
            "contexts": [{"name": "ctx", "context": {"cluster": "c", "user": "u"}}],
            "current-context": "ctx",
        }

        access = parse_kubeconfig(_encode(doc))

        assert access.cert_data == b64("cert")
        assert access.key_data == b64("key")
        assert access.username == "admin"
        assert access.password == "hunter2"

    def test_selects_named_context(self):
        doc = {
            "clusters": [
                {"name": "a", "cluster": {"server": "https://a:443"}},
                {"name": "b", "cluster": {"server": "https://b:443"}},
            ],
            "contexts": [
                {"name": "ctx-a", "context": {"cluster": "a"}},
                {"name": "ctx-b", "context": {"cluster": "b"}},
            ],
            "current-context": "ctx-b",
        }

        assert parse_kubeconfig(_encode(doc)).endpoint == "https://b:443"

    def test_missing_server_is_rejected(self):
        doc = {
            "clusters": [{"name": "c", "cluster": {}}],
            "contexts": [{"name": "ctx", "context": {"cluster": "c"}}],
            "current-context": "ctx",
        }
        with pytest.raises(ValidationError, match="server endpoint"):
            parse_kubeconfig(_encode(doc))

    def test_unknown_context_is_rejected(self):
        doc = {"contexts": [{"name": "ctx", "context": {}}], "current-context": "other"}
        with pytest.raises(ValidationError, match="other"):
            parse_kubeconfig(_encode(doc))


class TestDecodeKubeconfig:
    def test_invalid_base64(self):
        with pytest.raises(ValidationError, match="decode"):
            decode_kubeconfig("not base64!!")

    def test_invalid_yaml(self):
        with pytest.raises(ValidationError, match="parse"):
            decode_kubeconfig(b64("key: [unclosed"))

    def test_non_mapping(self):
        with pytest.raises(ValidationError, match="not a mapping"):
            decode_kubeconfig(b64("- a\n- b\n"))
