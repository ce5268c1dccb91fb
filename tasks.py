""" Invoke tasks for asgistatic. Run ``invoke -l`` to list them.
"""

import os
import sys
import shutil

from invoke import task


LIBNAME = "asgistatic"
ROOT_DIR = os.path.dirname(os.path.abspath(__file__))
SITE_DIR = os.path.join(ROOT_DIR, "tests", "site")
PY_PATHS = [LIBNAME, "examples", "tests", "tasks.py", "setup.py"]
BACKENDS = ("mock", "uvicorn", "hypercorn")

JUNK_DIRS = (
    "__pycache__",
    ".pytest_cache",
    "htmlcov",
    "dist",
    "build",
    LIBNAME + ".egg-info",
)


@task(help={"server": "mock, uvicorn, hypercorn or all", "cover": "open html report"})
def tests(ctx, server="mock", cover=False):
    """Run the test suite, against the mock server or a real ASGI server."""
    servers = BACKENDS if server == "all" else (server,)
    for name in servers:
        if name not in BACKENDS:
            sys.exit(f"Unknown server {name!r}, expected one of {BACKENDS}")
        print(f"Running tests with ASGI server: {name}")
        ctx.run(
            f"{sys.executable} -m pytest -v --cov={LIBNAME} --cov-report=term"
            " --cov-report=html tests",
            env={"ASGI_SERVER": name},
            pty=False,
        )
    if cover:
        import webbrowser

        webbrowser.open(os.path.join(ROOT_DIR, "htmlcov", "index.html"))


@task(help={"root": "directory to serve, default the test site"})
def serve(ctx, root=SITE_DIR, port=8080, server="uvicorn", fallback=""):
    """Serve a directory with the asgistatic CLI, for manual testing."""
    cmd = f"{sys.executable} -m {LIBNAME} {root} --port={port} --server={server}"
    if fallback:
        cmd += f" --fallback={fallback}"
    ctx.run(cmd, pty=False)


@task
def lint(ctx):
    """Check for undefined names and indentation errors with flake8."""
    paths = " ".join(PY_PATHS)
    ctx.run(f"{sys.executable} -m flake8 {paths} --select=F,E11", pty=False)
    print("No style errors found")


@task(help={"check": "only report files that black would change"})
def autoformat(ctx, check=False):
    """Format the code with black."""
    flag = " --check" if check else ""
    ctx.run(f"{sys.executable} -m black{flag} {ROOT_DIR}", pty=False)


@task
def clean(ctx):
    """Remove caches, coverage data and build artifacts."""
    for root, dirs, files in os.walk(ROOT_DIR):
        for dname in dirs:
            if dname in JUNK_DIRS:
                shutil.rmtree(os.path.join(root, dname))
                print("Removing", os.path.relpath(os.path.join(root, dname)))
        for fname in files:
            if fname.endswith((".pyc", ".pyo")) or fname == ".coverage":
                os.remove(os.path.join(root, fname))
                print("Removing", os.path.relpath(os.path.join(root, fname)))
