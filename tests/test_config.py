import pytest

from kuzupy.config import Config
from kuzupy.ds import WorkerSpec
from kuzupy.errors import InvalidArgument


def test_from_dict() -> None:
    c = Config.from_dict(
        {
            "timeout": 20000,
            "servers": [
                {"name": "1", "host": "127.0.0.1", "port": 52001},
                {"name": "2", "host": "127.0.0.1", "port": "52002"},
            ],
        }
    )
    assert c.timeout_s == 20
    assert c.servers == [WorkerSpec("1", "127.0.0.1", 52001), WorkerSpec("2", "127.0.0.1", 52002)]
    assert c.concurrency == 1


def test_from_dict_defaults_and_overrides() -> None:
    c = Config.from_dict({"servers": [], "concurrency": 4, "chunk_size": 10})
    assert c.timeout_s == 20.0
    assert (c.concurrency, c.chunk_size) == (4, 10)


def test_invalid() -> None:
    with pytest.raises(InvalidArgument):
        Config(servers=[WorkerSpec("1", "a", 1), WorkerSpec("1", "b", 2)])
    with pytest.raises(InvalidArgument):
        Config(concurrency=0)
    with pytest.raises(InvalidArgument):
        Config.from_dict({"servers": [{"name": "1", "host": "a"}]})
