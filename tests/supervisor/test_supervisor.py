import signal
from ipaddress import IPv4Address
from pathlib import Path
from types import SimpleNamespace

import pytest

from kubernix import supervisor as supervisor_mod
from kubernix.config.models import Settings
from kubernix.errors import PreconditionError, ReadinessError, UnexpectedExitError, UserCancelled
from kubernix.hooks import env_file
from kubernix.kube.kubectl import Kubectl
from kubernix.observers.dispatcher import EventBus
from kubernix.observers.interface import Observer
from kubernix.pki import bundle_at, pki_dir
from kubernix.supervisor import State, Supervisor, required_binaries
from kubernix.system import System

START_ORDER = [
    "etcd", "apiserver", "controller-manager", "scheduler",
    "crio (host)", "kubelet (host)", "proxy (host)",
]


class Capture(Observer):
    def __init__(self): self.events = []
    def notify(self, event): self.events.append(event)


class FakeSystem(System):
    def __init__(self):
        super().__init__(runner=None)
        self.prepared = False
        self.unmounted = []

    def prepare(self): self.prepared = True
    def hostname(self): return "host"
    def host_ip(self): return IPv4Address("192.168.1.10")
    def routes(self): return []
    def umount_below(self, root, timeout=5.0): self.unmounted.append(root)


class FakeRunner:
    def __init__(self):
        self.calls = []

    def run(self, argv, *, stdin_text=None, env=None, cwd=None, check=True):
        self.calls.append(list(argv))
        out = "coredns-1 1/1 Running 0 1s" if "get" in argv else ""
        return SimpleNamespace(returncode=0, stdout=out, stderr="")


class FakeChild:
    def __init__(self, name, stops, fail=None, stop_error=None):
        self.name = name
        self.pid = 1000 + len(stops)
        self.stops = stops
        self.fail = fail
        self.stop_error = stop_error
        self.exited_unexpectedly = False

    @property
    def alive(self):
        return self.name not in self.stops

    def wait_ready(self, markers, timeout):
        if self.fail is not None:
            raise self.fail

    def stop(self, timeout=10.0):
        if self.name in self.stops:
            return
        self.stops.append(self.name)
        if self.stop_error:
            raise RuntimeError(self.stop_error)


class Spawner:
    def __init__(self, fail=None, stop_errors=None, after_start=None):
        self.started = []
        self.stops = []
        self.fail = fail or {}
        self.stop_errors = stop_errors or {}
        self.after_start = after_start

    def __call__(self, argv, log_file, *, name=None, env=None, cwd=None):
        child = FakeChild(name, self.stops, self.fail.get(name), self.stop_errors.get(name))
        self.started.append(name)
        if self.after_start:
            self.after_start(child)
        return child


@pytest.fixture(autouse=True)
def fakes(monkeypatch):
    monkeypatch.setattr(System, "verify_executables", classmethod(lambda cls, names: None))
    monkeypatch.setattr(System, "find_executable", staticmethod(lambda name: Path("/opt/bin") / name))
    monkeypatch.setattr(
        supervisor_mod, "ensure_pki", lambda settings, plan, **kw: bundle_at(pki_dir(settings), plan)
    )


def make(tmp_path, spawner, *, post_ready=None, **kw):
    settings = Settings(root=tmp_path, readiness_timeout=1)
    runner = FakeRunner()
    capture = Capture()
    bus = EventBus([capture])
    sup = Supervisor(
        settings,
        system=FakeSystem(),
        runner=runner,
        kubectl=Kubectl(tmp_path / "kubeconfig" / "admin.kubeconfig", runner=runner),
        bus=bus,
        post_ready=post_ready,
        start_process=spawner,
        install_signals=False,
        require_root=False,
        **kw,
    )
    return sup, capture


def test_happy_path_tears_down_in_reverse(tmp_path):
    spawner = Spawner()
    seen = {}

    def hook():
        seen["state"] = sup.state
        seen["alive"] = list(spawner.started)
        seen["stops"] = list(spawner.stops)

    sup, capture = make(tmp_path, spawner, post_ready=hook)
    assert sup.run() == 0

    assert spawner.started == START_ORDER
    assert seen == {"state": State.READY, "alive": START_ORDER, "stops": []}
    assert spawner.stops == list(reversed(START_ORDER))
    assert sup.supervised == []
    assert sup.state is State.DONE
    assert sup.system.prepared
    assert sup.system.unmounted == [tmp_path]

    env = env_file(tmp_path).read_text()
    assert f"export KUBECONFIG={tmp_path / 'kubeconfig' / 'admin.kubeconfig'}" in env
    assert f"CONTAINER_RUNTIME_ENDPOINT=unix://{tmp_path / 'crio' / 'crio.sock'}" in env
    assert (tmp_path / "encryption-config.yml").exists()
    # CRI-O reads the signature policy even without a container runtime
    assert (tmp_path / "policy.json").exists()
    assert str(tmp_path / "policy.json") in (tmp_path / "crio" / "crio.conf").read_text()

    states = [e.state for e in capture.events if type(e).__name__ == "StateChanged"]
    assert states == ["Preparing", "StartingCore", "StartingNodes", "Ready", "Stopping", "Done"]
    summary = capture.events[-2]
    assert type(summary).__name__ == "TeardownSummary"
    assert (summary.stopped, summary.failed) == (7, 0)


def test_readiness_failure_rolls_back(tmp_path):
    spawner = Spawner(fail={"scheduler": ReadinessError("Timed out waiting for process 'scheduler'")})
    hook_calls = []
    sup, _ = make(tmp_path, spawner, post_ready=lambda: hook_calls.append(1))

    assert sup.run() == 1
    assert hook_calls == []
    assert spawner.started == START_ORDER[:4]
    # scheduler is stopped by its own failed launch, the rest in reverse
    assert spawner.stops == ["scheduler", "controller-manager", "apiserver", "etcd"]
    assert isinstance(sup.error, ReadinessError)


def test_cancel_during_startup(tmp_path):
    spawner = Spawner(fail={"scheduler": UserCancelled(signal.SIGINT)})
    sup, _ = make(tmp_path, spawner)

    assert sup.run() == 1
    assert spawner.stops == ["scheduler", "controller-manager", "apiserver", "etcd"]


def test_cancel_while_ready_is_clean(tmp_path):
    def hook():
        raise UserCancelled(signal.SIGTERM)

    spawner = Spawner()
    sup, _ = make(tmp_path, spawner, post_ready=hook)
    assert sup.run() == 0
    assert spawner.stops == list(reversed(START_ORDER))


def test_teardown_errors_are_aggregated(tmp_path):
    spawner = Spawner(stop_errors={"apiserver": "refused to die"})
    sup, capture = make(tmp_path, spawner)

    assert sup.run() == 1
    # every child was still visited
    assert spawner.stops == list(reversed(START_ORDER))
    summary = next(e for e in capture.events if type(e).__name__ == "TeardownSummary")
    assert (summary.stopped, summary.failed) == (6, 1)


def test_unexpected_exit_aborts_startup(tmp_path):
    def after_start(child):
        if child.name == "apiserver":
            child.exited_unexpectedly = True

    spawner = Spawner(after_start=after_start)
    sup, _ = make(tmp_path, spawner)

    assert sup.run() == 1
    assert spawner.started == ["etcd", "apiserver"]
    assert spawner.stops == ["apiserver", "etcd"]



def test_child_dying_while_shell_is_open_fails_the_run(tmp_path):
    def hook():
        # kubelet dies while the user works in the shell
        sup.supervised[5].process.exited_unexpectedly = True

    spawner = Spawner()
    sup, _ = make(tmp_path, spawner, post_ready=hook, interactive=True)

    assert sup.run() == 1
    assert isinstance(sup.error, UnexpectedExitError)
    assert "kubelet (host)" in str(sup.error)
    assert spawner.stops == list(reversed(START_ORDER))


def test_unmount_failure_is_a_teardown_failure(tmp_path, monkeypatch):
    def no_umount(root, timeout=5.0):
        raise PreconditionError("Unable to find executable 'umount'")

    spawner = Spawner()
    sup, capture = make(tmp_path, spawner)
    monkeypatch.setattr(sup.system, "umount_below", no_umount)

    assert sup.run() == 1
    assert spawner.stops == list(reversed(START_ORDER))
    assert sup.state is State.DONE
    summary = next(e for e in capture.events if type(e).__name__ == "TeardownSummary")
    assert (summary.stopped, summary.failed) == (7, 1)

def test_missing_binaries_fail_before_any_child(tmp_path, monkeypatch):
    def missing(cls, names):
        raise PreconditionError("Unable to find executable(s) in $PATH: etcd")

    monkeypatch.setattr(System, "verify_executables", classmethod(missing))
    spawner = Spawner()
    sup, _ = make(tmp_path, spawner)

    assert sup.run() == 1
    assert spawner.started == []
    assert not (tmp_path / "pki").exists()


def test_root_required(tmp_path, monkeypatch):
    monkeypatch.setattr(supervisor_mod.os, "geteuid", lambda: 1000)
    spawner = Spawner()
    sup, _ = make(tmp_path, spawner)
    sup.require_root = True
    assert sup.run() == 1
    assert isinstance(sup.error, PreconditionError)


def test_signal_handler_behaviour(tmp_path):
    sup, _ = make(tmp_path, Spawner(), interactive=True)

    sup._state = State.STARTING_CORE
    with pytest.raises(UserCancelled):
        sup._on_signal(signal.SIGTERM, None)

    sup._signals = 0
    sup._state = State.READY
    # Ctrl-C belongs to the interactive shell
    sup._on_signal(signal.SIGINT, None)
    with pytest.raises(UserCancelled):
        sup._on_signal(signal.SIGTERM, None)

    sup._signals = 0
    sup._state = State.STOPPING
    sup._on_signal(signal.SIGTERM, None)
    assert sup._signals == 1


def test_required_binaries_include_runtime(tmp_path):
    assert "podman" not in required_binaries(Settings(root=tmp_path))
    s = Settings(root=tmp_path, nodes=2, container_runtime="podman")
    names = required_binaries(s)
    assert "podman" in names
    assert "cfssljson" in names and "crictl" in names


def test_progress_steps_grow_with_nodes(tmp_path):
    one = Supervisor(Settings(root=tmp_path), install_signals=False).progress_steps()
    two = Supervisor(
        Settings(root=tmp_path, nodes=2, container_runtime="docker"), install_signals=False
    ).progress_steps()
    assert two - one == 3
