#!/usr/bin/env python3
"""tagme card — local editor/viewer server.  Run with:  python3 start-webui.py"""
import sys
import os
from pathlib import Path

script_dir = os.path.dirname(os.path.abspath(__file__))
src_dir    = os.path.join(script_dir, "src")

sys.path.insert(0, src_dir)
os.environ["PYTHONPATH"] = src_dir + os.pathsep + os.environ.get("PYTHONPATH", "")
os.chdir(script_dir)

from tagme_card.config import ensure_workspace
from tagme_card.server import main

_, settings = ensure_workspace(Path(script_dir))
# without Supabase credentials the cards live next to the script
main(settings, None if settings.remote_configured else Path(script_dir) / "cards-local")
