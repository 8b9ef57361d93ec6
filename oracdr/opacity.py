"""
Atmospheric opacity (tau) and flux conversion factors for the JCMT continuum instruments.

The opacity for an observation can come from several places, chosen with the tau system:

* CSO: the 225 GHz opacity in the observation header (ORAC_TAU)
* a number: a fixed CSO opacity given by the user
* SKYDIP or INDEX: the skydip closest in time in the skydip index
* DIPINTERP: interpolation between the skydips either side of the observation
* 850SKYDIP, 850DIPINTERP: as above using 850 micron skydips for every filter
* CSOFIT: polynomial fits to the CSO opacity history (csofit.dat)
* WVM: the water vapour monitor opacity in the header (ORAC_WVM_TAU)

Skydip systems fall back to the header CSO opacity, with a warning, when no skydip is found.
"""
import logging
import warnings

from oracdr.calib import entry_number
from oracdr.context import oracut_from_oractime
from oracdr.errors import CalibrationNotFoundError, ConfigurationError, TauConversionError
from oracdr.tau import get_tau, normalise_filter, CsoFit

logger = logging.getLogger(__name__)

skydip_item = "skydip"
gains_item = "gains"

planets = ("MARS", "JUPITER", "SATURN", "URANUS", "NEPTUNE")

# ORACUT limits used when an FCF table entry has no START or END
_infinite_start = 19900101
_infinite_end = 30000101


def _is_number(text):
    try:
        float(text)
    except (TypeError, ValueError):
        return False
    return True


class OpacityCalculator():
    """
    Works out the opacity and gain to use for an observation

    Args:
        cal (oracdr.calib.Calibration): calibration object owning the skydip and gains indexes
        tausys (str): [optional] tau system. Defaults to CSO.
        gains (str): [optional] gain system, DEFAULT (built in table) or INDEX (gains index)
        default_fcfs (dict): [optional] FCF table keyed by filter. Each value is a list of dicts
                             with optional START and END (ORACUT) and BEAM and ARCSEC values.
        calibrator_fluxes (dict): [optional] fluxes of secondary calibrators keyed by source, then filter

    Attributes:
        cal (oracdr.calib.Calibration): calibration object
        taucache (dict): opacities already worked out, keyed by (tausys, ORACTIME, filter)
        default_fcfs (dict): FCF table
        calibrator_fluxes (dict): secondary calibrator fluxes
    """

    def __init__(self, cal, tausys="CSO", gains="DEFAULT", default_fcfs=None, calibrator_fluxes=None):
        self.cal = cal
        self.tausys = tausys
        self.gains = gains
        self.taucache = {}
        self.default_fcfs = default_fcfs if default_fcfs is not None else {}
        self.calibrator_fluxes = calibrator_fluxes if calibrator_fluxes is not None else {}
        self._csofit = None

    @property
    def tausys(self):
        """
        str: the tau system, upper case
        """
        return self._tausys

    @tausys.setter
    def tausys(self, value):
        self._tausys = "CSO" if value is None else str(value).upper()

    @property
    def gains(self):
        """
        str: the gain system, DEFAULT or INDEX
        """
        return self._gains

    @gains.setter
    def gains(self, value):
        self._gains = "DEFAULT" if value is None else str(value).upper()

    @property
    def csofit(self):
        """
        oracdr.tau.CsoFit: CSO opacity fits, read from csofit.dat the first time they are needed
        """
        if self._csofit is None:
            self._csofit = CsoFit(self.cal.find_file("csofit.dat"))
        return self._csofit

    def tau(self, filt, context=None):
        """
        Returns the zenith opacity for a filter. Results are cached for each tau system,
        observation time and filter; failures are not cached.

        Args:
            filt (str): filter name, e.g. "850"
            context (oracdr.context.ObservationContext): [optional] observation

        Returns:
            float: the opacity
        """
        filt = str(filt).upper()
        context = self.cal._resolve_context(context)
        sys = self.tausys
        oractime = context.oractime

        cache_key = (sys, oractime, filt)
        if cache_key in self.taucache:
            return self.taucache[cache_key]

        if sys == "CSO":
            tau = self._from_header(filt, context, "ORAC_TAU")
        elif _is_number(sys):
            tau = get_tau(filt, "CSO", float(sys))
        elif "DIP" in sys or sys == "INDEX":
            tau = self._from_skydips(sys, filt, context)
        elif sys == "CSOFIT":
            csotau = self.csofit.tau(oractime)
            if csotau is None:
                raise CalibrationNotFoundError("No CSO fit covers ORACTIME {0}".format(oractime),
                                               details={"file": self.csofit.filepath})
            tau = get_tau(filt, "CSO", csotau)
        elif sys == "WVM":
            if context.get("ORAC_WVM_TAU") is not None:
                logger.info("WVM data located in frame: %.4f +/- %s", float(context["ORAC_WVM_TAU"]),
                            context.get("ORAC_WVM_TAU_STDEV"))
            tau = self._from_header(filt, context, "ORAC_WVM_TAU")
        else:
            raise ConfigurationError("tausys is non-standard ({0})".format(sys))

        self.taucache[cache_key] = tau
        return tau

    def _from_header(self, filt, context, keyword):
        value = context.get(keyword)
        if value is None:
            raise CalibrationNotFoundError("No {0} in the header to derive an opacity from".format(keyword))
        return get_tau(filt, "CSO", float(value))

    def _search_skydip(self, sys, query):
        """
        Finds the skydip opacity for the filter in the query header. Does not scale to another filter.

        Args:
            sys (str): tau system. Systems containing INTERP interpolate.
            query (oracdr.context.ObservationContext): observation with FILTER set to the skydip filter

        Returns:
            float: the skydip opacity
        """
        if "INTERP" in sys:
            return self.cal.interpolate(skydip_item, "TAUZ", query)

        index = self.cal.index(skydip_item, query)
        nearest = index.choose_nearest(query, warn=False)
        if nearest is None:
            raise CalibrationNotFoundError("No suitable skydip for filter {0}".format(query.get("FILTER")))
        entry = index.get_entry(nearest)
        age = abs(entry_number(entry, "ORACTIME", nearest) - query.oractime)
        if age > self.cal.config.skydip_max_age / 24.0:
            warnings.warn("Skydip {0} was taken {1:5.2f} hours from this observation. Using it anyway."
                          .format(nearest, age * 24.0))
        return entry_number(entry, "TAUZ", nearest)

    def _from_skydips(self, sys, filt, context):
        try:
            if normalise_filter(filt) == "850":
                tau = self._search_skydip(sys, context.augmented(FILTER=filt))
            elif sys.startswith("850"):
                # scale from the 850 skydips
                found = "850"
                dip_tau = self._search_skydip(sys, context.augmented(FILTER=found))
                logger.info("Using %s tau of %6.3f to generate tau for filter %s", found, dip_tau, filt)
                try:
                    tau = get_tau(filt, found, dip_tau)
                except TauConversionError:
                    intermed_tau = get_tau("CSO", found, dip_tau)
                    tau = get_tau(filt, "CSO", intermed_tau)
            else:
                tau = self._search_skydip(sys, context.augmented(FILTER=filt))
        except (CalibrationNotFoundError, TauConversionError) as e:
            warnings.warn("No suitable skydip found ({0}) - converting from CSO tau".format(e))
            tau = self._from_header(filt, context, "ORAC_TAU")
        return tau

    def default_fcf(self, filt, units, ut):
        """
        Looks up the default flux conversion factor for a date

        Args:
            filt (str): filter name
            units (str): BEAM or ARCSEC
            ut (int): UT date as YYYYMMDD

        Returns:
            float: the FCF, or None if the table has nothing for this combination
        """
        filt = str(filt).upper()
        units = str(units).upper()
        ut = int(ut)

        if filt not in self.default_fcfs:
            filt = normalise_filter(filt)
        if filt not in self.default_fcfs:
            return None

        for period in self.default_fcfs[filt]:
            start = period.get("START", _infinite_start)
            end = period.get("END", _infinite_end)
            if start <= ut <= end:
                return period.get(units)
        return None

    def gain(self, filt, context=None, units="BEAM"):
        """
        Returns the flux conversion factor (gain) for a filter

        Args:
            filt (str): filter name
            context (oracdr.context.ObservationContext): [optional] observation
            units (str): BEAM (Jy/beam) or ARCSEC (Jy/arcsec**2)

        Returns:
            float: the gain
        """
        filt = str(filt).upper()
        units = str(units).upper()
        if units not in ("BEAM", "ARCSEC"):
            raise ConfigurationError("Units must be BEAM or ARCSEC, not '{0}'".format(units))
        context = self.cal._resolve_context(context)

        if self.gains == "DEFAULT":
            ut = context.get("ORACUT")
            if ut is None:
                ut = oracut_from_oractime(context.oractime)
            gain = self.default_fcf(filt, units, ut)
            if gain is None:
                raise CalibrationNotFoundError("No gain exists for filter {0} ({1})".format(filt, units))
            return gain

        if self.gains == "INDEX":
            query = context.augmented(FILTER=filt, UNITS=units)
            index = self.cal.index(gains_item, query)
            best = index.choose_nearest(query, warn=False)
            if best is None:
                raise CalibrationNotFoundError("No suitable gain calibration could be found for filter {0} ({1})"
                                               .format(filt, units))
            gain = index.get_entry(best).get("GAIN")
            if gain is None:
                raise CalibrationNotFoundError("Unable to obtain GAIN from index file entry {0}".format(best))
            return float(gain)

        raise ConfigurationError("Gains system non standard ({0})".format(self.gains))

    def iscalsource(self, source, filt=None):
        """
        Args:
            source (str): source name
            filt (str): [optional] filter. If not given, only asks whether the source is a calibrator.

        Returns:
            bool: True if the flux of the source is known
        """
        source = str(source).upper()
        if source in planets:
            return True
        if source not in self.calibrator_fluxes:
            return False
        return filt is None or normalise_filter(filt) in self.calibrator_fluxes[source]

    def fluxcal(self, source, filt):
        """
        Returns the flux of a secondary calibrator. Planet fluxes need an ephemeris and are not available.

        Args:
            source (str): source name
            filt (str): filter name

        Returns:
            float: flux in Jy, or None if it is not known
        """
        source = str(source).upper()
        filt = normalise_filter(filt)
        if source in self.calibrator_fluxes:
            return self.calibrator_fluxes[source].get(filt)
        if source in planets:
            logger.warning("Planet fluxes for %s are not available without an ephemeris engine", source)
        return None
