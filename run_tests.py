#!/usr/bin/env python3
"""Shortcuts for the pytest suites of the alert engine.

    python run_tests.py alerts
    python run_tests.py coverage
"""

import argparse
import shutil
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).parent

COVERAGE = ["--cov=alertdesk", "--cov-report=html"]

SUITES = {
    "unit": ["tests/", "-m", "not integration", "-v"],
    "integration": ["tests/", "-m", "integration", "-v"],
    "alerts": ["tests/test_alerts/", "-v"],
    "ormdb": ["tests/test_ormdb/", "-v"],
    "core": ["tests/test_core/", "tests/test_events/", "-v"],
    "fast": ["tests/", "-q", "-p", "no:cacheprovider"],
    "all": ["tests/", "-v", *COVERAGE],
    "coverage": ["tests/", *COVERAGE, "--cov-report=term"],
}

ARTIFACTS = [".coverage", "htmlcov", ".pytest_cache"]


def clean() -> None:
    for name in ARTIFACTS:
        path = ROOT / name
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            path.unlink()
    for cache in ROOT.rglob("__pycache__"):
        shutil.rmtree(cache, ignore_errors=True)
    print("🧹 Removed coverage and cache artifacts")


def run_suite(name: str) -> int:
    cmd = [sys.executable, "-m", "pytest", *SUITES[name]]
    print(f"\n🧪 {name}: {' '.join(cmd)}\n" + "=" * 50)
    code = subprocess.run(cmd, cwd=ROOT).returncode

    if code == 0:
        print(f"\n✅ {name} passed")
        if name == "coverage":
            print("📊 HTML report: htmlcov/index.html")
    else:
        print(f"\n❌ {name} failed (exit {code})")
    return code


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("suite", choices=[*SUITES, "clean"])
    args = parser.parse_args()

    if args.suite == "clean":
        clean()
        return
    sys.exit(run_suite(args.suite))


if __name__ == "__main__":
    main()
