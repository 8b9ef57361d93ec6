#!/usr/bin/env python3
"""
Script to print the calibrations an observation would use.

Usage:
    python select_calibrations.py <instrument> <fits_file> dark flat mask [--override flat=flat_20090618_00047]
        [--dataout <dir>] [--caldir <dir>]

Output directory and calibration directories default to the values in ~/.oracdr/oracdr.cfg.
"""

import argparse
import os

from oracdr.config import CalibConfig
from oracdr.errors import CalibrationError
import oracdr.walker as walker


def parse_overrides(overrides):
    """
    Turns NAME=VALUE strings into a dictionary

    Args:
        overrides (list): strings of the form NAME=VALUE

    Returns:
        dict: values keyed by calibration name
    """
    parsed = {}
    for override in overrides or []:
        if "=" not in override:
            raise ValueError("Override '{0}' is not of the form NAME=VALUE".format(override))
        name, value = override.split("=", 1)
        parsed[name.strip()] = value.strip()
    return parsed


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Select the calibrations to use for an observation"
    )
    parser.add_argument("instrument", help="Instrument name, e.g. UIST")
    parser.add_argument("fits_file", help="FITS file of the observation")
    parser.add_argument("calibs", nargs="+", help="Calibrations to select, e.g. dark flat")
    parser.add_argument("--override", action="append", default=[],
                        help="Force a calibration, NAME=VALUE. Can be given more than once.")
    parser.add_argument("--dataout", default=None, help="Per-run output directory")
    parser.add_argument("--caldir", action="append", default=None, help="Calibration directory. Can be given more than once.")

    args = parser.parse_args()

    if not os.path.isfile(args.fits_file):
        print(f"Error: {args.fits_file} does not exist")
        exit(1)

    config = CalibConfig.from_settings(data_out=args.dataout, cal_dirs=args.caldir)
    try:
        selected = walker.select_calibrations(args.instrument, args.fits_file, args.calibs, config=config,
                                              overrides=parse_overrides(args.override))
    except CalibrationError as e:
        print(f"Error: {e}")
        exit(1)

    for name, value in selected.items():
        print(f"{name:16s} {value}")
