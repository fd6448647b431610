import json

import pytest
from jinja2 import UndefinedError

from kubernix.assets.render import TemplateRenderer
from kubernix.errors import ProvisioningError


def test_render_csr():
    out = TemplateRenderer().render("csr.json", {"cn": "system:node:n", "o": "system:nodes"})
    data = json.loads(out)
    assert data["CN"] == "system:node:n"
    assert data["names"][0]["O"] == "system:nodes"
    assert data["key"] == {"algo": "rsa", "size": 2048}


def test_write_creates_parent_dirs(tmp_path):
    target = tmp_path / "coredns" / "coredns.yml"
    TemplateRenderer().write("coredns.yml", target, {"dns_ip": "10.10.192.2"})
    text = target.read_text()
    assert "clusterIP: 10.10.192.2" in text
    assert "k8s-app: kube-dns" in text


def test_missing_parameter_is_an_error():
    with pytest.raises(UndefinedError):
        TemplateRenderer().render("kubelet.yml", {"ca": "/pki/ca.pem"})


def test_unknown_template():
    with pytest.raises(ProvisioningError):
        TemplateRenderer().render("nope.yml")


def test_bridge_config_is_valid_json():
    out = TemplateRenderer().render(
        "bridge.json", {"node": "node-0", "bridge": "kubernix1", "cidr": "10.10.0.0/17"}
    )
    data = json.loads(out)
    assert data["bridge"] == "kubernix1"
    assert data["ipam"]["ranges"] == [[{"subnet": "10.10.0.0/17"}]]


def test_default_nix_lists_extra_packages():
    out = TemplateRenderer().render("default.nix", {"packages": ["hello", "jq"]})
    assert "  hello\n" in out
    assert "  jq\n" in out
