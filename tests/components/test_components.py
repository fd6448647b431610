from pathlib import Path
from types import SimpleNamespace

import pytest

from kubernix.components import control_plane, coredns, node
from kubernix.components.base import ClusterContext, launch
from kubernix.components.registry import COMPONENTS, CONTROL_PLANE, NODE, spec
from kubernix.config.models import Settings
from kubernix.container import ContainerRuntime
from kubernix.errors import CommandError, PreconditionError, ReadinessError, TeardownError
from kubernix.kube.kubectl import Kubectl, KubectlError
from kubernix.kubeconfig import KubeconfigBundle
from kubernix.network import plan
from kubernix.observers.dispatcher import EventBus
from kubernix.observers.events import new_ctx
from kubernix.observers.interface import Observer
from kubernix.pki import bundle_at, pki_dir
from kubernix.system import System


class Capture(Observer):
    def __init__(self): self.events = []
    def notify(self, event): self.events.append(event)


class FakeChild:
    def __init__(self, argv, log_file, name, fail=False):
        self.argv = list(argv)
        self.log_file = log_file
        self.name = name
        self.pid = 4242
        self.fail = fail
        self.stopped = 0
        self.exited_unexpectedly = False
        self.markers = None

    @property
    def alive(self):
        return self.stopped == 0

    def wait_ready(self, markers, timeout):
        self.markers = markers
        if self.fail:
            raise ReadinessError(f"Timed out waiting for process '{self.name}'")

    def stop(self, timeout=10.0):
        self.stopped += 1


class Spawner:
    def __init__(self, fail=()):
        self.children = []
        self.fail = fail

    def __call__(self, argv, log_file, *, name=None, env=None, cwd=None):
        child = FakeChild(argv, log_file, name, fail=any(f in name for f in self.fail))
        self.children.append(child)
        return child


class FakeRunner:
    def __init__(self, pods="", fail_on=None):
        self.calls = []
        self.pods = pods
        self.fail_on = fail_on

    def run(self, argv, *, stdin_text=None, env=None, cwd=None, check=True):
        self.calls.append((list(argv), env))
        if self.fail_on and self.fail_on in argv:
            raise CommandError(argv, 1, "", "crictl failed")
        out = self.pods if argv[:2] == ["crictl", "pods"] else ""
        if "get" in argv:
            out = "coredns-1 1/1 Running 0 1s"
        return SimpleNamespace(returncode=0, stdout=out, stderr="")


@pytest.fixture(autouse=True)
def fake_executables(monkeypatch):
    monkeypatch.setattr(System, "find_executable", staticmethod(lambda name: Path("/opt/bin") / name))


def make_cluster(settings, network, *, spawner=None, runner=None, container=None):
    kc = settings.root / "kubeconfig"
    runner = runner or FakeRunner()
    bus = EventBus()
    capture = Capture()
    bus.subscribe(capture)
    cluster = ClusterContext(
        settings=settings,
        plan=network,
        pki=bundle_at(pki_dir(settings), network),
        kubeconfigs=KubeconfigBundle(
            admin=kc / "admin.kubeconfig",
            kubelets=tuple(kc / f"kubelet-{n}.kubeconfig" for n in network.nodes),
            proxy=kc / "kube-proxy.kubeconfig",
            controller_manager=kc / "kube-controller-manager.kubeconfig",
            scheduler=kc / "kube-scheduler.kubeconfig",
        ),
        encryption_config=settings.root / "encryption-config.yml",
        kubectl=Kubectl(kc / "admin.kubeconfig", runner=runner),
        runner=runner,
        container=container,
        bus=bus,
        event_ctx=new_ctx(str(settings.root), "run-1"),
        start_process=spawner or Spawner(),
    )
    return cluster, capture


def test_marker_table():
    assert COMPONENTS["etcd"].markers == ("ready to serve client requests",)
    assert COMPONENTS["crio"].markers == ("sandboxes:",)
    assert COMPONENTS["apiserver"].markers == ("etcd ok",)
    assert COMPONENTS["controller-manager"].markers == ("Serving securely",)
    assert COMPONENTS["scheduler"].markers == ("Serving securely",)
    assert COMPONENTS["kubelet"].markers == ("Successfully registered node",)
    assert "Caches are synched" in COMPONENTS["proxy"].markers
    assert [spec(n).binary for n in CONTROL_PLANE + NODE] == [
        "etcd", "kube-apiserver", "kube-controller-manager", "kube-scheduler",
        "crio", "kubelet", "kube-proxy",
    ]


def test_etcd_argv_and_events(settings, network):
    cluster, capture = make_cluster(settings, network)
    c = control_plane.start_etcd(cluster)

    argv = c.process.argv
    assert argv[0] == "etcd"
    assert "--listen-client-urls=https://127.0.0.1:2379" in argv
    assert f"--trusted-ca-file={cluster.pki.ca.cert}" in argv
    assert c.process.log_file == settings.root / "log" / "etcd.log"
    assert c.process.markers == ("ready to serve client requests",)
    kinds = [type(e).__name__ for e in capture.events]
    assert kinds == ["ComponentStarting", "ComponentReady"]


def test_apiserver_applies_rbac(settings, network):
    runner = FakeRunner()
    cluster, _ = make_cluster(settings, network, runner=runner)
    c = control_plane.start_apiserver(cluster)

    argv = c.process.argv
    assert f"--service-cluster-ip-range={network.service_cidr}" in argv
    assert f"--encryption-provider-config={cluster.encryption_config}" in argv
    assert f"--audit-log-path={settings.root / 'api-server' / 'audit.log'}" in argv
    applied = [a for a, _ in runner.calls if a[1] == "apply"]
    assert applied[0][3] == str(settings.root / "api-server" / "rbac.yml")


def test_apiserver_stopped_when_rbac_fails(settings, network):
    spawner = Spawner()
    cluster, _ = make_cluster(settings, network, spawner=spawner, runner=FakeRunner(fail_on="apply"))
    with pytest.raises(KubectlError):
        control_plane.start_apiserver(cluster)
    assert spawner.children[0].stopped == 1


def test_scheduler_writes_config(settings, network):
    cluster, _ = make_cluster(settings, network)
    c = control_plane.start_scheduler(cluster)
    config = settings.root / "scheduler" / "config.yml"
    assert c.process.argv == ["kube-scheduler", f"--config={config}", "--v=2"]
    assert str(cluster.kubeconfigs.scheduler) in config.read_text()


def test_readiness_failure_stops_child_and_emits_failure(settings, network):
    spawner = Spawner(fail=("controller-manager",))
    cluster, capture = make_cluster(settings, network, spawner=spawner)
    with pytest.raises(ReadinessError):
        control_plane.start_controller_manager(cluster)
    assert spawner.children[0].stopped == 1
    assert type(capture.events[-1]).__name__ == "ComponentFailed"


def test_single_node_crio_kubelet_proxy(settings, network):
    cluster, _ = make_cluster(settings, network)
    crio = node.start_crio(cluster, 0)
    kubelet = node.start_kubelet(cluster, 0)
    proxy = node.start_proxy(cluster, 0)

    crio_dir = settings.root / "crio"
    assert crio.process.argv == ["crio", f"--config={crio_dir / 'crio.conf'}"]
    assert (crio_dir / "cni" / "bridge.json").exists()
    assert 'listen = "%s"' % (crio_dir / "crio.sock") in (crio_dir / "crio.conf").read_text()

    argv = kubelet.process.argv
    assert "--hostname-override=host" in argv
    assert f"--container-runtime-endpoint=unix://{crio_dir / 'crio.sock'}" in argv
    kubelet_cfg = (settings.root / "kubelet" / "config.yml").read_text()
    assert "port: 11250" in kubelet_cfg
    assert "healthzPort: 12250" in kubelet_cfg
    assert f'clusterDNS:\n  - "{network.dns_ip}"' in kubelet_cfg

    assert proxy.process.argv[0] == "kube-proxy"
    assert "127.0.0.1:10256" in (settings.root / "proxy" / "config.yml").read_text()
    assert proxy.process.log_file == settings.root / "log" / "kube-proxy.log"


def test_multi_node_wraps_into_containers(tmp_path, monkeypatch):
    from ipaddress import IPv4Address
    from kubernix import container as container_mod

    monkeypatch.setattr(container_mod, "DEV_MAPPER", tmp_path / "none")
    s = Settings(root=tmp_path, nodes=2, container_runtime="docker")
    p = plan(s, hostname="host", host_ip=IPv4Address("192.168.1.10"))
    runner = FakeRunner()
    cluster, _ = make_cluster(s, p, runner=runner, container=ContainerRuntime(s, runner=runner))

    crio = node.start_crio(cluster, 1)
    kubelet = node.start_kubelet(cluster, 1)

    assert ["docker", "rm", "-f", "kubernix-node-1"] in [a for a, _ in runner.calls]
    assert crio.process.argv[:2] == ["docker", "run"]
    assert "--name=kubernix-node-1" in crio.process.argv
    assert crio.process.log_file == tmp_path / "log" / "crio-node-1.log"
    assert (tmp_path / "crio" / "node-1" / "crio.conf").exists()
    assert kubelet.process.argv[:3] == ["docker", "exec", "kubernix-node-1"]
    assert "healthzPort: 12251" in (tmp_path / "kubelet" / "node-1" / "config.yml").read_text()


def test_crio_stop_removes_pods_first(settings, network):
    runner = FakeRunner(pods="pod-a\npod-b\n")
    cluster, _ = make_cluster(settings, network, runner=runner)
    crio = node.start_crio(cluster, 0)
    crio.stop()

    calls = [a for a, _ in runner.calls]
    assert calls == [
        ["crictl", "pods", "-q"],
        ["crictl", "rmp", "-f", "pod-a"],
        ["crictl", "rmp", "-f", "pod-b"],
    ]
    env = runner.calls[0][1]
    assert env["CONTAINER_RUNTIME_ENDPOINT"] == f"unix://{settings.root / 'crio' / 'crio.sock'}"
    assert crio.process.stopped == 1


def test_crio_cleanup_failure_still_stops_process(settings, network):
    runner = FakeRunner(fail_on="pods")
    cluster, _ = make_cluster(settings, network, runner=runner)
    crio = node.start_crio(cluster, 0)
    with pytest.raises(TeardownError):
        crio.stop()
    assert crio.process.stopped == 1


def test_socket_path_too_long(tmp_path):
    with pytest.raises(PreconditionError):
        node.CriSocket(tmp_path / ("a" * 101))
    assert node.CriSocket(Path("/some/path.sock")).endpoint() == "unix:///some/path.sock"


def test_coredns_applied_and_awaited(settings, network):
    runner = FakeRunner()
    cluster, _ = make_cluster(settings, network, runner=runner)
    coredns.apply_coredns(cluster)

    calls = [a for a, _ in runner.calls]
    assert calls[0][:3] == ["kubectl", "apply", "-f"]
    assert "-l=k8s-app=kube-dns" in calls[1]
    assert "clusterIP: 10.10.192.2" in (settings.root / "coredns" / "coredns.yml").read_text()


def test_launch_without_event_context_is_silent(settings, network):
    cluster, capture = make_cluster(settings, network)
    cluster.event_ctx = {}
    launch(cluster, spec("etcd"), ["etcd"])
    assert capture.events == []
