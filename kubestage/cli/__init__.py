"""KubeStage command-line interface.

Exposes:
    cli  -- Click group (usable with click's CliRunner).
    main -- Console-script entry point (registered as ``kubestage``).
"""

from kubestage.cli.main import cli, main

__all__ = ["cli", "main"]
