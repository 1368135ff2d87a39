"""Copilot chat bridge: Direct Line text chat plus an Azure OpenAI voice relay.

Importing the package reads Azure and Direct Line credentials from ``server/.env``
and then ``server/.env.local`` so ``chatbridge.config`` sees them at import time.
Variables already exported in the shell win over ``.env``; ``.env.local`` wins
over both.
"""
from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

SERVER_DIR = Path(__file__).resolve().parent.parent

for _env_file, _override in ((SERVER_DIR / ".env", False), (SERVER_DIR / ".env.local", True)):
    if _env_file.is_file():
        load_dotenv(_env_file, override=_override)
