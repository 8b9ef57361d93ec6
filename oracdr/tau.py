"""
Conversion of atmospheric opacity between the CSO 225 GHz reference and the
SCUBA-2 filters, and polynomial fits to the CSO opacity history.
"""
import re

import numpy as np

from oracdr.errors import TauConversionError, ConfigurationError

# tau_filter = a * (tau_cso - b)
relations = {
    "850": (4.6, 0.0043),
    "450": (26.0, 0.0196),
}

# the linear relations are only valid for CSO opacities in this range
cso_tau_min = 0.0
cso_tau_max = 0.5


def normalise_filter(filt):
    """
    Turns a filter name ("850W", "SCUBA2-450") into the key of the relations table

    Args:
        filt (str or float): filter name or wavelength

    Returns:
        str: "CSO" or the filter wavelength in microns as a string
    """
    if isinstance(filt, float) and filt.is_integer():
        filt = int(filt)
    filt = str(filt).upper()
    if filt == "CSO":
        return filt
    # the wavelength is the last run of three or more digits ("SCUBA2-450" is 450, not 2)
    wavelengths = re.findall(r"\d{3,}", filt)
    if len(wavelengths) == 0:
        raise TauConversionError("Unrecognised filter '{0}'".format(filt))
    return wavelengths[-1]


def _check_cso(tau_cso):
    if not np.isfinite(tau_cso) or tau_cso < cso_tau_min:
        raise TauConversionError("CSO opacity {0} is not a valid opacity".format(tau_cso))
    if tau_cso > cso_tau_max:
        raise TauConversionError("Opacity too high: CSO tau {0:.3f} is above {1}, where the relation stops being valid"
                                 .format(tau_cso, cso_tau_max))


def get_tau(target, source, tau):
    """
    Converts an opacity measured in one band into another. Only conversions to and from
    CSO are defined; converting between two filters has to go through CSO.

    Args:
        target (str): filter wanted (or "CSO")
        source (str): filter the opacity was measured in (or "CSO")
        tau (float): opacity in the source band

    Returns:
        float: opacity in the target band. Never negative.
    """
    target = normalise_filter(target)
    source = normalise_filter(source)
    tau = float(tau)

    if target == source:
        if source == "CSO":
            _check_cso(tau)
        return tau

    if source == "CSO":
        if target not in relations:
            raise TauConversionError("No opacity relation for filter {0}".format(target))
        _check_cso(tau)
        a, b = relations[target]
        return max(a * (tau - b), 0.0)

    if target == "CSO":
        if source not in relations:
            raise TauConversionError("No opacity relation for filter {0}".format(source))
        a, b = relations[source]
        tau_cso = max(tau / a + b, 0.0)
        _check_cso(tau_cso)
        return tau_cso

    raise TauConversionError("Cannot convert opacity directly from {0} to {1}".format(source, target))


class CsoFit():
    """
    Piecewise polynomial fits to the CSO opacity as a function of time, read from a file
    with one fit per line::

        # start end c0 c1 c2 ...
        55000.0 55001.0 0.08 0.01 -0.002

    start and end are ORACTIMEs. The polynomial is evaluated in days since start with the
    lowest order coefficient first.

    Args:
        filepath (str): path to the fits file (usually csofit.dat)

    Attributes:
        filepath (str): path to the fits file
        fits (list): list of (start, end, coefficients) tuples
    """

    def __init__(self, filepath):
        self.filepath = filepath
        self.fits = []
        with open(filepath, "r") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if len(line) == 0 or line.startswith("#"):
                    continue
                try:
                    values = [float(token) for token in line.split()]
                except ValueError:
                    raise ConfigurationError("Bad line {0} in {1}: {2}".format(lineno, filepath, line))
                if len(values) < 3:
                    raise ConfigurationError("Line {0} of {1} has no coefficients".format(lineno, filepath))
                self.fits.append((values[0], values[1], np.array(values[2:])))

    def tau(self, oractime):
        """
        Evaluates the fit covering a time

        Args:
            oractime (float): time of the observation

        Returns:
            float: CSO opacity, or None if no fit covers this time
        """
        for start, end, coeffs in self.fits:
            if start <= oractime <= end:
                return float(np.polynomial.polynomial.polyval(oractime - start, coeffs))
        return None
