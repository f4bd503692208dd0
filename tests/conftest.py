"""
Shared fakes for beo-connect tests.

The Web API, the local player and the helper process spawner are replaced
by small recording fakes; everything else is the real code.
"""

import pytest
import pytest_asyncio

from beoconnect import config
from beoconnect.history import PlaybackHistory
from beoconnect.local_player import PlayerStatus
from beoconnect.scheduler import TaskScheduler
from beoconnect.spotify import api as spotify_api
from beoconnect.state import Device, DeviceRegistry, Song

TEST_CONFIG = {
    "connect": {
        "helper": "/usr/bin/spotty",
        "cache_dir": "/tmp/beo-connect-cache",
        "server_host": "192.168.1.10",
        "port": 9000,
        "enabled": True,
        "default_account": "acct1",
        "devices": {
            "aa:bb": {"name": "Kitchen", "enabled": True, "account": "acct1"},
            "cc:dd": {"name": "Office", "enabled": False},
        },
    },
}


class FakeAPI:
    """Records Web API calls; ``state`` is what player() returns."""

    def __init__(self):
        self.calls = []
        self.state = None
        self.next_state = None
        self.remote_ids = {}
        self.discoverable = {}

    def id_from_mac(self, device_id):
        return self.remote_ids.get(device_id)

    async def player(self):
        self.calls.append(("player",))
        return self.state

    async def player_next(self):
        self.calls.append(("next",))
        if self.next_state is not None:
            self.state = self.next_state
        return True

    async def player_pause(self, device_id=None):
        self.calls.append(("pause", device_id))
        return True

    async def player_volume(self, device_id, volume):
        self.calls.append(("volume", device_id, volume))
        return True

    async def devices(self):
        self.calls.append(("devices",))
        self.remote_ids.update(self.discoverable)
        return [{"id": rid, "name": mac} for mac, rid in self.remote_ids.items()]

    def called(self, name):
        return [c for c in self.calls if c[0] == name]


class FakePlayer:
    """Records local commands; ``statuses[device_id]`` is what status() returns."""

    def __init__(self):
        self.commands = []
        self.statuses = {}

    async def execute(self, device_id, command):
        self.commands.append((device_id, command))
        return True

    async def status(self, device_id):
        return self.statuses.get(device_id, PlayerStatus())

    def actions(self, device_id=None):
        return [(c.action, c.value) for d, c in self.commands if device_id in (None, d)]


class FakeProcess:
    _next_pid = 1000

    def __init__(self, output=b""):
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.returncode = None
        self.terminated = False
        self.output = output

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def kill(self):
        self.returncode = -9

    async def wait(self):
        return self.returncode

    async def communicate(self):
        self.returncode = 0
        return self.output, None


class FakeSpawner:
    def __init__(self):
        self.launches = []
        self.processes = []
        self.fail = False
        self.version = b"spotty v1.0.4\n"

    async def __call__(self, program, *args, **kwargs):
        if self.fail:
            raise FileNotFoundError(program)
        self.launches.append([program, *args])
        proc = FakeProcess(self.version if "--version" in args else b"")
        self.processes.append(proc)
        return proc


@pytest.fixture(autouse=True)
def test_config():
    config.set_config(TEST_CONFIG)
    yield TEST_CONFIG
    config.set_config(None)


@pytest.fixture(autouse=True)
def clean_remote_ids():
    spotify_api._device_names.clear()
    spotify_api._remote_ids.clear()
    yield


@pytest.fixture
def api():
    return FakeAPI()


@pytest.fixture
def player():
    return FakePlayer()


@pytest.fixture
def spawner():
    return FakeSpawner()


@pytest_asyncio.fixture
async def scheduler():
    sched = TaskScheduler()
    yield sched
    sched.cancel_all()


@pytest.fixture
def history():
    return PlaybackHistory()


@pytest.fixture
def registry():
    return DeviceRegistry()


@pytest.fixture
def device(registry):
    return registry.add(Device("aa:bb", "Kitchen", enabled=True, account="acct1"))


def connect_active(device, url="spotify://track:A", started_at=0.0):
    """Put *device* in Connect mode, playing *url*."""
    device.connect_mode = True
    device.song = Song(url, 200.0, connect_started_at=started_at)
    return device
