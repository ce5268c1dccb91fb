"""
Test some meta stuff.
"""

import os
import importlib.util

import pytest
import asgistatic


ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def test_namespace():
    assert asgistatic.__version__

    ns = set(name for name in dir(asgistatic) if not name.startswith("_"))

    ns.discard("testutils")  # may or may not be imported

    assert ns == {
        "Config",
        "HttpRequest",
        "DisconnectedError",
        "respond",
        "resolve_path",
        "get_file_info",
        "FileInfo",
        "StaticFileError",
        "PathTraversalError",
        "NotFoundError",
        "to_asgi",
        "make_app",
        "run",
        "serve",
    }
    assert ns == set(asgistatic.__all__)


def test_tasks():
    invoke = pytest.importorskip("invoke")

    spec = importlib.util.spec_from_file_location(
        "tasks", os.path.join(ROOT_DIR, "tasks.py")
    )
    tasks = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(tasks)

    for name in ("tests", "serve", "lint", "autoformat", "clean"):
        assert isinstance(getattr(tasks, name), invoke.Task), name
    assert tasks.SITE_DIR == os.path.join(ROOT_DIR, "tests", "site")
    assert "all" not in tasks.BACKENDS


def test_newlines():
    # Let's be a bit pedantic about sanitizing whitespace :)

    for root, dirs, files in os.walk(os.path.dirname(os.path.abspath(__file__))):
        for fname in files:
            if fname.endswith((".py", ".md", ".rst", ".yml")):
                with open(os.path.join(root, fname), "rb") as f:
                    text = f.read().decode()
                    assert "\r" not in text, f"{fname} has CR!"
                    assert "\t" not in text, f"{fname} has tabs!"


if __name__ == "__main__":
    test_namespace()
    test_newlines()
