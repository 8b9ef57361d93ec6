import os
from dataclasses import dataclass, field

import oracdr


@dataclass
class CalibConfig():
    """
    Paths and options handed to a Calibration object when it is built. The engine never
    reads global settings itself; everything it needs is in here.

    Attributes:
        data_out (str): per-run output directory. Dynamic index files are written here.
        cal_dirs (list): ordered list of shared calibration directories searched after data_out
        warn_on_search (bool): warn about every index entry rejected by a rule while searching
        skydip_max_age (float): hours between a skydip and the observation before a warning is issued
        lofreq_halfwidth (float): half width (GHz) of the LO frequency range used to match sideband corrections
        skip_missing_cal_steps (bool): walker marks steps as skipped instead of raising
    """
    data_out: str = "."
    cal_dirs: list = field(default_factory=list)
    warn_on_search: bool = True
    skydip_max_age: float = 3.0
    lofreq_halfwidth: float = 1.0
    skip_missing_cal_steps: bool = False

    @classmethod
    def from_settings(cls, data_out=None, cal_dirs=None):
        """
        Builds a configuration from the pipeline settings read from ~/.oracdr/oracdr.cfg

        Args:
            data_out (str): [optional] override the output directory
            cal_dirs (list): [optional] override the calibration search directories

        Returns:
            oracdr.config.CalibConfig: the configuration
        """
        if data_out is None:
            data_out = oracdr.data_out_dir if oracdr.data_out_dir else os.getcwd()
        if cal_dirs is None:
            cal_dirs = [oracdr.default_cal_dir] if oracdr.default_cal_dir else []

        return cls(data_out=data_out, cal_dirs=list(cal_dirs),
                   warn_on_search=oracdr.warn_on_search,
                   skydip_max_age=oracdr.skydip_max_age,
                   lofreq_halfwidth=oracdr.lofreq_halfwidth,
                   skip_missing_cal_steps=oracdr.skip_missing_cal_steps)

    @property
    def search_path(self):
        """
        list: directories to search for calibration files, output directory first
        """
        return [self.data_out] + list(self.cal_dirs)
