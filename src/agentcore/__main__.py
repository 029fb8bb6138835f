"""Agent core CLI bootstrap."""

from __future__ import annotations

from agentcore.cli import app

if __name__ == "__main__":
    app()
