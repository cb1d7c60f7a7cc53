#!/usr/bin/env python3
"""
OpenClaw Migration
Finds an OpenClaw (formerly moltbot/clawdbot) installation on this host and
migrates it to a renamed account and the canonical ~/.openclaw layout.

Features:
- weighted discovery of the owning account
- dry-run support (every action described, nothing changed)
- safe re-runs (each step skips work already done)
- backward-compatible symlinks for old paths

Run as root for a live migration; --dry-run works as any user.
"""

from __future__ import annotations

import sys

from openclaw_migrate.cli import main

if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
