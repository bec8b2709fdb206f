"""Tests for the command line entry point."""

import json
import textwrap

import pytest

from twolevel_lru.main import main


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "cache.yaml"
    path.write_text(
        textwrap.dedent(
            """
            memory:
              max_size: 4
            disk:
              directory: store
              max_size_bytes: 16777216
            converter: json
            workload:
              num_requests: 200
              num_keys: 20
              seed: 5
              value_size: 32
            """
        )
    )
    return path


def run(config_path, *args):
    return main(["--config", str(config_path), *args])


class TestCommands:
    def test_put_then_get_across_processes(self, config_path, capsys):
        assert run(config_path, "put", "k", '{"a": [1, 2]}') == 0
        assert run(config_path, "get", "k") == 0
        assert json.loads(capsys.readouterr().out.strip()) == {"a": [1, 2]}

    def test_get_missing(self, config_path, capsys):
        assert run(config_path, "get", "nope") == 1
        assert "not found" in capsys.readouterr().out

    def test_remove(self, config_path, capsys):
        run(config_path, "put", "k", "1")
        run(config_path, "remove", "k")
        capsys.readouterr()
        assert run(config_path, "get", "k") == 1

    def test_stats(self, config_path, capsys):
        assert run(config_path, "stats") == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["max_size"] == 4
        assert stats["disk_max_size"] == 16777216

    def test_evict_all(self, config_path, tmp_path):
        run(config_path, "put", "k", "1")
        assert run(config_path, "evict-all") == 0
        assert list((tmp_path / "store").iterdir()) == []

    def test_bench(self, config_path, capsys):
        assert run(config_path, "bench") == 0
        out = capsys.readouterr().out
        assert "Two-Level Cache Benchmark Report" in out
        assert "Total requests: 200" in out
