#!/usr/bin/env python
"""
Command-line entry point of the granulator (installed as the ``granulator`` command).

Examples:
    # Hand tracker with default settings
    granulator

    # Face and audio trackers, face driving the granularity
    granulator --trackers face,audio --verbose
"""

import argh
from granulator.script_utils import granulator_cli


def dispatched_granulator_cli():
    argh.dispatch_command(granulator_cli)


if __name__ == "__main__":
    dispatched_granulator_cli()
