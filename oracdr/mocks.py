import os

import numpy as np
import astropy.io.fits as fits

from oracdr.config import CalibConfig
from oracdr.context import ObservationContext


def create_cal_dirs(basedir):
    """
    Makes an output directory and a calibration directory for testing

    Args:
        basedir (str): directory to put them in

    Returns:
        tuple:
            data_out (str):
                path to the per-run output directory
            cal_dir (str):
                path to the shared calibration directory
    """
    data_out = os.path.join(basedir, "dataout")
    cal_dir = os.path.join(basedir, "cal")
    for dirpath in (data_out, cal_dir):
        if not os.path.exists(dirpath):
            os.makedirs(dirpath)
    return data_out, cal_dir


def create_config(basedir, **options):
    """
    Makes test directories and a configuration pointing at them

    Args:
        basedir (str): directory to put the test directories in
        **options: any other CalibConfig option

    Returns:
        oracdr.config.CalibConfig: the configuration
    """
    data_out, cal_dir = create_cal_dirs(basedir)
    return CalibConfig(data_out=data_out, cal_dirs=[cal_dir], **options)


def write_rules(dirpath, root, rules):
    """
    Writes a rules file

    Args:
        dirpath (str): directory to write to
        root (str): rules file is called rules.<root>
        rules (list): lines of the rules file, e.g. ["ORACTIME", "FILTER =="]

    Returns:
        str: path to the rules file
    """
    filepath = os.path.join(dirpath, "rules." + root)
    with open(filepath, "w") as f:
        f.write("# rules for {0}\n".format(root))
        for line in rules:
            f.write(line + "\n")
    return filepath


def write_index(dirpath, root, columns, entries):
    """
    Writes an index file by hand

    Args:
        dirpath (str): directory to write to
        root (str): index file is called index.<root>
        columns (list): column names, in the same order as the rules
        entries (list): list of (key, dict of column values) tuples. Tuple values are written
                        as comma separated lists.

    Returns:
        str: path to the index file
    """
    filepath = os.path.join(dirpath, "index." + root)
    with open(filepath, "w") as f:
        f.write(" ".join(["#ID"] + list(columns)) + "\n")
        for key, values in entries:
            tokens = [key]
            for col in columns:
                val = values[col]
                if isinstance(val, (tuple, list)):
                    val = ",".join(str(v) for v in val)
                tokens.append(str(val))
            f.write(" ".join(tokens) + "\n")
    return filepath


def create_context(oractime, uhdr=None, **header):
    """
    Makes an observation context

    Args:
        oractime (float): ORACTIME of the observation
        uhdr (dict): [optional] derived header values
        **header: other header values

    Returns:
        oracdr.context.ObservationContext: the context
    """
    header["ORACTIME"] = oractime
    return ObservationContext(header, uhdr)


def create_fits_file(filepath, header):
    """
    Writes a small FITS image with the given primary header values

    Args:
        filepath (str): where to write the file
        header (dict): header keywords and values

    Returns:
        str: filepath
    """
    hdu = fits.PrimaryHDU(data=np.zeros((4, 4), dtype=np.float32))
    for key, val in header.items():
        hdu.header[key] = val
    hdu.writeto(filepath, overwrite=True)
    return filepath


def create_skydip_index(dirpath, dips):
    """
    Writes rules and index files for skydips

    Args:
        dirpath (str): directory to write to
        dips (list): list of (key, oractime, filter, tauz) tuples

    Returns:
        str: path to the index file
    """
    write_rules(dirpath, "skydip", ["ORACTIME", "FILTER ==", "TAUZ"])
    entries = [(key, {"ORACTIME": t, "FILTER": filt, "TAUZ": tau}) for key, t, filt, tau in dips]
    return write_index(dirpath, "skydip", ["ORACTIME", "FILTER", "TAUZ"], entries)
