"""
Read-only view of the headers of the observation that calibrations are being selected for.
"""
from collections.abc import Mapping
from types import MappingProxyType

import astropy.time as time
from astropy.io import fits

from oracdr.errors import ConfigurationError


def oractime_from_isot(isot):
    """
    Converts a UT timestamp into ORACTIME (fractional Modified Julian Date)

    Args:
        isot (str or astropy.time.Time): timestamp, e.g. "2009-06-18T12:00:00"

    Returns:
        float: ORACTIME
    """
    return float(time.Time(isot, scale="utc").mjd)


def oracut_from_oractime(oractime):
    """
    Converts ORACTIME into the integer UT date ORACUT (YYYYMMDD)

    Args:
        oractime (float): ORACTIME

    Returns:
        int: UT date
    """
    return int(time.Time(oractime, format="mjd", scale="utc").strftime("%Y%m%d"))


class ObservationContext(Mapping):
    """
    The header and derived (user) header of one observation. The merged view is what rules
    are evaluated against; values in the user header win when a key is in both.

    Contexts are immutable. To widen a query (e.g. turn an LO frequency into a range)
    use augmented(), which returns a new context.

    Args:
        header (dict): primary header values
        uhdr (dict): [optional] derived header values

    Attributes:
        header (mappingproxy): primary header values
        uhdr (mappingproxy): derived header values
    """

    def __init__(self, header, uhdr=None):
        self.header = MappingProxyType(dict(header))
        self.uhdr = MappingProxyType(dict(uhdr) if uhdr is not None else {})
        merged = dict(self.header)
        merged.update(self.uhdr)
        self._thing = MappingProxyType(merged)

    @property
    def thing(self):
        """
        mappingproxy: header merged with the user header
        """
        return self._thing

    def __getitem__(self, key):
        return self._thing[key]

    def __iter__(self):
        return iter(self._thing)

    def __len__(self):
        return len(self._thing)

    def __repr__(self):
        return "ObservationContext(ORACTIME={0})".format(self._thing.get("ORACTIME"))

    @property
    def oractime(self):
        """
        float: observation time. Raises ConfigurationError if the context has none.
        """
        if "ORACTIME" not in self._thing:
            raise ConfigurationError("Observation has no ORACTIME header")
        return float(self._thing["ORACTIME"])

    def augmented(self, **extra):
        """
        Returns a new context with extra keys added to the user header. This object is not modified.

        Args:
            **extra: header keys and values to add

        Returns:
            oracdr.context.ObservationContext: the widened context
        """
        uhdr = dict(self.uhdr)
        uhdr.update(extra)
        return ObservationContext(self.header, uhdr)

    @classmethod
    def from_fits(cls, filepath, ext=0, uhdr=None):
        """
        Builds a context from a FITS header. ORACTIME and ORACUT are derived from DATE-OBS
        if they are not already in the header.

        Args:
            filepath (str): path to the FITS file
            ext (int): [optional] HDU to read the header from
            uhdr (dict): [optional] derived header values

        Returns:
            oracdr.context.ObservationContext: context for this file
        """
        with fits.open(filepath) as hdulist:
            hdr = hdulist[ext].header
            header = {key: hdr[key] for key in hdr.keys() if key not in ("", "COMMENT", "HISTORY")}

        derived = dict(uhdr) if uhdr is not None else {}
        if "ORACTIME" not in header and "ORACTIME" not in derived:
            if "DATE-OBS" not in header:
                raise ConfigurationError("Cannot determine ORACTIME for {0}: no DATE-OBS".format(filepath))
            derived["ORACTIME"] = oractime_from_isot(header["DATE-OBS"])
        if "ORACUT" not in header and "ORACUT" not in derived:
            oractime = derived.get("ORACTIME", header.get("ORACTIME"))
            derived["ORACUT"] = oracut_from_oractime(float(oractime))

        return cls(header, derived)
