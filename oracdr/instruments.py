"""
Instrument profiles: the calibration items each instrument uses, how they are selected and
what the defaults are. Everything instrument specific lives in the tables below; selection
itself is done by oracdr.calib.Calibration.
"""
import re
from dataclasses import replace

from oracdr.calib import Calibration
from oracdr.config import CalibConfig
from oracdr.errors import ConfigurationError
from oracdr.items import CalibrationItem, IndexLocation, SelectionPolicy
from oracdr.opacity import OpacityCalculator
import oracdr.receptors as receptors

### defaults and hooks

def default_file(filename, spectroscopy_filename=None):
    """
    Builds a fallback that returns a default calibration file from the search path,
    with any .sdf extension removed

    Args:
        filename (str): default file
        spectroscopy_filename (str): [optional] file preferred for spectroscopy observations, if it exists

    Returns:
        callable: fallback(cal, context) returning the file or None if it can't be found
    """
    def fallback(cal, context):
        names = []
        if spectroscopy_filename is not None and cal.is_spectroscopy_mode(context):
            names.append(spectroscopy_filename)
        names.append(filename)
        for name in names:
            try:
                filepath = cal.find_file(name)
            except ConfigurationError:
                continue
            return re.sub(r"\.sdf$", "", filepath)
        return None
    return fallback


def observation_mode_is(pattern):
    """
    Builds a mode predicate matching ORAC_OBSERVATION_MODE (case insensitive)

    Args:
        pattern (str): regular expression, e.g. "imag"

    Returns:
        callable: predicate(context)
    """
    def predicate(context):
        return re.search(pattern, str(context.get("ORAC_OBSERVATION_MODE", "")), re.IGNORECASE) is not None
    return predicate


def uses_grism(context):
    """
    Returns:
        bool: True if a grism is in the beam (FILTER3), i.e. NIRI is taking a spectrum
    """
    return re.search("grism", str(context.get("FILTER3", "")), re.IGNORECASE) is not None


def lofreq_range(cal, context):
    """
    Widens the LO frequency of an observation into LOFREQ_MIN/LOFREQ_MAX so that sideband
    corrections measured at a nearby frequency match

    Args:
        cal (oracdr.calib.Calibration): calibration object
        context (oracdr.context.ObservationContext): observation

    Returns:
        oracdr.context.ObservationContext: the widened context
    """
    lofreq = context.get("LOFREQ")
    if lofreq is None:
        return context
    halfwidth = cal.config.lofreq_halfwidth
    return context.augmented(LOFREQ_MIN=float(lofreq) - halfwidth, LOFREQ_MAX=float(lofreq) + halfwidth)


def _modify(items, name, **changes):
    """
    Returns the item table with one item changed
    """
    return [replace(item, **changes) if item.name == name else item for item in items]


### item families

def oir_items(mask_fallback=None):
    """
    Returns:
        list: items shared by the optical/infrared instruments
    """
    if mask_fallback is None:
        mask_fallback = default_file("bpm.sdf")
    return [
        CalibrationItem("bias"),
        CalibrationItem("dark"),
        CalibrationItem("flat"),
        CalibrationItem("mask", fallback=mask_fallback),
        CalibrationItem("readnoise", columns="READNOISE"),
        CalibrationItem("sky"),
    ]


def imaging_items():
    """
    Returns:
        list: items used by infrared imagers
    """
    return [
        CalibrationItem("baseshift", columns="BASESHIFT", isarray=True),
        CalibrationItem("polrefang", columns="POLREFANG", location=IndexLocation.STATIC),
        CalibrationItem("referenceoffset", columns="REFERENCEOFFSET", isarray=True),
        CalibrationItem("skybrightness", columns="SKY_BRIGHTNESS"),
        CalibrationItem("zeropoint", columns="ZEROPOINT"),
        CalibrationItem("dqc", columns=("FWHM", "ELLIPTICITY")),
    ]


def spectroscopy_items():
    """
    Returns:
        list: items used by infrared spectrographs
    """
    return [
        CalibrationItem("arc"),
        CalibrationItem("arlines", location=IndexLocation.STATIC, policy=SelectionPolicy.NEAREST_PAST, warn=False),
        CalibrationItem("calibratedarc", location=IndexLocation.STATIC, policy=SelectionPolicy.NEAREST_PAST,
                        warn=False, lenient=True),
        CalibrationItem("iar"),
        CalibrationItem("profile"),
        CalibrationItem("standard"),
        CalibrationItem("rows", columns=("NBEAMS", "BEAMS"), index_root="row", lenient=True),
    ]


def jcmt_items():
    """
    Returns:
        list: items shared by the JCMT instruments
    """
    return [
        CalibrationItem("pointing", columns=("DAZ", "DEL")),
        CalibrationItem("qaparams", location=IndexLocation.STATIC, resolve_file=True),
    ]


def imagspec_items(split=("flat", "sky")):
    """
    Items for instruments with both imaging and spectroscopy modes. The items named in
    split use separate _im and _sp indexes.

    Args:
        split (tuple): names of the mode dependent items

    Returns:
        list: the items
    """
    items = oir_items(default_file("bpm.sdf", spectroscopy_filename="bpm_sp.sdf")) + imaging_items()
    items += [item for item in spectroscopy_items() if item.name not in [i.name for i in items]]
    for name in split:
        items = _modify(items, name, mode_split=True)
    return items


### instrument data

# default flux conversion factors, by filter, in date order
scuba2_fcfs = {
    "850": [{"START": 20060101, "ARCSEC": 1.0, "BEAM": 435}],
    "450": [{"START": 20060101, "ARCSEC": 1.0, "BEAM": 130}],
}

# secondary calibrator fluxes (Jy) by source and filter
scuba2_calibrators = {
    "HLTAU": {"850": 2.32, "450": 10.4},
    "CRL618": {"850": 4.57, "450": 11.9},
    "CRL2688": {"850": 5.88, "450": 24.8},
    "16293-2422": {"850": 16.3, "450": 78.1},
    "OH231.8": {"850": 2.52, "450": 10.53},
}


def _ufti():
    return {"items": oir_items() + imaging_items() + [
        CalibrationItem("fpcentre", columns="FPCENTRE", isarray=True),
    ]}


def _ircam():
    return {"items": oir_items() + imaging_items()}


def _wfcam():
    items = oir_items() + imaging_items() + [
        CalibrationItem("lintab"),
        CalibrationItem("cpm"),
        CalibrationItem("photom"),
        CalibrationItem("astrom"),
    ]
    # many darks and flats per night: don't report every rejected one
    items = _modify(items, "dark", warn=False)
    items = _modify(items, "flat", warn=False)
    return {"items": items}


def _swfcam():
    items = _wfcam()["items"] + [
        CalibrationItem("interleavemask", location=IndexLocation.STATIC),
    ]
    items = _modify(items, "flat", location=IndexLocation.STATIC)
    return {"items": items}


def _cgs4():
    items = oir_items(default_file("fpa46_long.sdf")) + spectroscopy_items() + [
        CalibrationItem("engineering"),
    ]
    items = _modify(items, "mask", index_root="bpm")
    return {"items": items}


def _uist():
    return {"items": imagspec_items(),
            "imaging_predicate": observation_mode_is("imag"),
            "spectroscopy_predicate": observation_mode_is("spec")}


def _michelle():
    return {"items": imagspec_items(split=("flat", "sky", "standard")),
            "imaging_predicate": observation_mode_is("imag"),
            "spectroscopy_predicate": observation_mode_is("spec")}


def _niri():
    items = _modify(imagspec_items(), "arlines", policy=SelectionPolicy.NEAREST)
    return {"items": items,
            "imaging_predicate": lambda context: not uses_grism(context),
            "spectroscopy_predicate": uses_grism}


def _scuba2():
    items = jcmt_items() + [
        CalibrationItem("mask", lenient=True, warn=False),
        CalibrationItem("resp", lenient=True, warn=False),
        CalibrationItem("skydip", columns="TAUZ"),
        CalibrationItem("gains", columns="GAIN"),
    ]
    return {"items": items,
            "opacity": {"tausys": "CSO", "default_fcfs": scuba2_fcfs, "calibrator_fluxes": scuba2_calibrators}}


def _acsis():
    items = jcmt_items() + [
        CalibrationItem("bad_receptors", policy=SelectionPolicy.UNION, default="INDEXORMASTER"),
        CalibrationItem(receptors.master_item, columns=receptors.detector_column, location=IndexLocation.STATIC,
                        policy=SelectionPolicy.NEAREST_PAST, lenient=True, index_root="bad_receptors"),
        CalibrationItem(receptors.qa_item, columns=receptors.detector_column,
                        policy=SelectionPolicy.NEAREST_PAST, lenient=True),
        CalibrationItem("sideband_corr", columns="SB_CORR", isarray=True,
                        policy=SelectionPolicy.NEAREST_PAST, context_hook=lofreq_range),
    ]
    return {"items": items}


instruments = {
    "UFTI": _ufti,
    "IRCAM": _ircam,
    "WFCAM": _wfcam,
    "SWFCAM": _swfcam,
    "CGS4": _cgs4,
    "UIST": _uist,
    "MICHELLE": _michelle,
    "NIRI": _niri,
    "SCUBA2": _scuba2,
    "ACSIS": _acsis,
}


def create_calibration(instrument, config=None):
    """
    Builds the calibration object for an instrument

    Args:
        instrument (str): instrument name (case insensitive), e.g. "UIST"
        config (oracdr.config.CalibConfig): [optional] paths and options. Read from the
                                            pipeline settings if not given.

    Returns:
        oracdr.calib.Calibration: calibration object for the instrument
    """
    key = str(instrument).upper().replace("-", "")
    if key not in instruments:
        raise ConfigurationError("Unknown instrument '{0}'. Known instruments: {1}"
                                 .format(instrument, ", ".join(sorted(instruments))))
    if config is None:
        config = CalibConfig.from_settings()

    profile = instruments[key]()
    cal = Calibration(config, profile["items"],
                      imaging_predicate=profile.get("imaging_predicate"),
                      spectroscopy_predicate=profile.get("spectroscopy_predicate"),
                      name=key)
    if "opacity" in profile:
        cal.opacity = OpacityCalculator(cal, **profile["opacity"])
    return cal
