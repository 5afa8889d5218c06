#!/usr/bin/env python3
"""
stationBOM CLI entrypoint (sb.py)

Hierarchical bill-of-materials expansion over a static assembly/parts catalog.

This file delegates to the stationbom CLI layer.
"""
from stationbom.cli.sb_cli import main

if __name__ == "__main__":
    main()
