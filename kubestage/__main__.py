"""Entry point for `python -m kubestage`.

Usage:
    python -m kubestage deploy -f manifests/
"""

from __future__ import annotations

from kubestage.cli import main

main()
