#!/usr/bin/env python3
"""
Test runner for the Emporium API.

USAGE:
    python tests/run_tests.py [options]

    Options:
    --payments       Run payment, webhook and fraud tests
    --storefront     Run catalog, cart, checkout and account tests
    --admin          Run back-office tests
    --all            Run every test module (default)
    --coverage       Run with coverage reporting (needs pytest-cov)
    --verbose        Run with verbose output
"""

import argparse
import subprocess
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent

SUITES = {
    "payments": ["tests/test_payments.py", "tests/test_webhooks.py", "tests/test_fraud.py",
                 "tests/test_security.py", "tests/test_gateway.py"],
    "storefront": ["tests/test_catalog.py", "tests/test_cart_checkout.py", "tests/test_wishlist_auth.py"],
    "admin": ["tests/test_admin_catalog.py", "tests/test_admin_orders.py", "tests/test_admin_system.py",
              "tests/test_scripts.py"],
    "all": ["tests/"],
}


def run_command(command, description):
    """Run a command and report whether it passed."""
    print(f"\n{'='*60}")
    print(f"Running: {description}")
    print(f"Command: {' '.join(command)}")
    print(f"{'='*60}")

    try:
        subprocess.run(command, check=True, cwd=project_root)
        print(f"\n{description} passed")
        return True
    except subprocess.CalledProcessError as e:
        print(f"\n{description} failed with exit code {e.returncode}")
        return False


def build_command(paths, verbose=False, coverage=False):
    command = [sys.executable, "-m", "pytest", *paths]
    if verbose:
        command.append("-v")
    if coverage:
        command.extend(["--cov=emporium", "--cov-report=term-missing"])
    return command


def main():
    parser = argparse.ArgumentParser(
        description="Test runner for the Emporium API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python tests/run_tests.py --payments
  python tests/run_tests.py --admin --verbose
  python tests/run_tests.py --all --coverage
        """
    )
    for suite in SUITES:
        parser.add_argument(f"--{suite}", action="store_true", help=f"Run the {suite} tests")
    parser.add_argument("--coverage", action="store_true", help="Run tests with coverage reporting")
    parser.add_argument("--verbose", action="store_true", help="Run with verbose output")
    args = parser.parse_args()

    selected = [name for name in SUITES if getattr(args, name)] or ["all"]

    results = []
    for name in selected:
        command = build_command(SUITES[name], verbose=args.verbose, coverage=args.coverage)
        results.append(run_command(command, f"{name.title()} tests"))

    print(f"\n{'='*60}")
    print("TEST RUN SUMMARY")
    print(f"{'='*60}")
    print(f"Suites run: {len(results)}")
    print(f"Passed: {sum(results)}")
    print(f"Failed: {len(results) - sum(results)}")

    sys.exit(0 if all(results) else 1)


if __name__ == "__main__":
    main()
