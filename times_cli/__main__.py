#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Entry point for running times_cli as a module.
Allows execution via: python -m times_cli
"""

from times_cli import run_cli

if __name__ == "__main__":
    run_cli()
