#!/usr/bin/env python3
"""Indeed Crawler — Application Runner.

Performs pre-flight checks and launches one crawl run. Command-line
arguments are passed through to indeed_crawler.main.

Usage:
    python scripts/run.py --query "backend engineer" --max-items 20
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

BANNER = r"""
╔══════════════════════════════════════════════════════════╗
║                                                          ║
║              Indeed Crawler v1.0                         ║
║        Paginated job listing crawl → SQLite              ║
║                                                          ║
╚══════════════════════════════════════════════════════════╝
"""

REQUIRED_FILES = [
    "config/settings.yaml",
]


def preflight_checks() -> bool:
    """Run pre-flight checks before starting the crawl.

    Checks:
      - .env file (optional, loaded when present)
      - Proxy configuration (warns when none)
      - Required config files exist
      - data/ and logs/ directories exist (creates them)

    Returns:
        True if all checks pass, False otherwise.
    """
    os.chdir(str(PROJECT_ROOT))
    ok = True

    env_path = PROJECT_ROOT / ".env"
    if env_path.exists():
        from dotenv import load_dotenv
        load_dotenv(env_path)
        print("✅ .env loaded")
    else:
        print("⚠️  .env not found (copy .env.example to configure proxies)")

    proxies = [p for p in os.environ.get("INDEED_PROXY_URLS", "").split(",") if p.strip()]
    if proxies:
        print(f"✅ {len(proxies)} proxy identities configured")
    else:
        print("⚠️  No proxies configured, challenges can only be retried from this IP")

    for f in REQUIRED_FILES:
        path = PROJECT_ROOT / f
        if not path.exists():
            print(f"❌ {f} not found!")
            ok = False
        else:
            print(f"✅ {f} exists")

    for d in ("data", "logs"):
        (PROJECT_ROOT / d).mkdir(exist_ok=True)
        print(f"✅ {d}/ directory ready")

    return ok


def main() -> None:
    """Entry point: run checks then start the crawl."""
    print(BANNER)

    print("═══ Pre-flight Checks ═══\n")
    if not preflight_checks():
        print("\n❌ Pre-flight checks failed! Fix the issues above and try again.")
        sys.exit(1)

    print("\n✅ All checks passed!\n")
    print("═══ Starting Indeed Crawler ═══\n")

    from indeed_crawler.main import main as app_main
    sys.exit(app_main(sys.argv[1:]))


if __name__ == "__main__":
    main()
