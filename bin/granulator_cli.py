#!/usr/bin/env python
"""
Command-line interface for the granulator.

This script provides a CLI wrapper around the run_granulator function, allowing all
parameters to be controlled via command-line arguments.

Examples:
    # Run the hand tracker with default settings
    python granulator_cli.py

    # Face tracker driving the granularity, audio tracker shown alongside
    python granulator_cli.py --trackers face,audio

    # Narrower granularity range, with debug logs
    python granulator_cli.py --min-granularity 4 --max-granularity 32 --verbose

    # Print the snapshots as they come
    python granulator_cli.py --log-snapshots

Keys: c calibrates, r resets the calibration, ESC or q quits.
"""

import argh
from granulator.script_utils import granulator_cli


if __name__ == "__main__":
    argh.dispatch_command(granulator_cli)
