"""
Bad detector (bolometer/receptor) lists built by merging several sources.

The source list is a comma separated string such as "MASTER,INDEX,H03:H07":

* MASTER: long lived master index in the calibration directories (bad_receptors)
* INDEX or QA: index written by this run's quality assurance (bad_receptors_qa)
* INDEXORMASTER: the QA index if it has a suitable entry, otherwise the master index
* FILE: first line of badbol.lis in the output directory
* NONE: nothing
* anything else: a literal colon separated list of names

Both indexes only use entries taken at or before the observation.
"""
import logging
import os
import warnings

logger = logging.getLogger(__name__)

master_item = "bad_receptors_master"
qa_item = "bad_receptors_qa"
detector_column = "DETECTORS"
badbol_file = "badbol.lis"
empty_marker = "NONE" # stored in the index when an observation has no bad detectors


def _names(value):
    """
    Turns an index value into a list of detector names

    Args:
        value (str, float or tuple): DETECTORS value from an index entry

    Returns:
        list: upper case detector names
    """
    if value is None:
        return []
    if not isinstance(value, (tuple, list)):
        value = str(value).split(",")
    names = []
    for name in value:
        if isinstance(name, float) and name.is_integer():
            name = int(name)
        name = str(name).strip().upper()
        if len(name) > 0 and name != empty_marker:
            names.append(name)
    return names


def from_index(cal, item, context):
    """
    Reads the bad detectors of the closest earlier entry in one of the bad detector indexes

    Args:
        cal (oracdr.calib.Calibration): calibration object
        item (str): item name of the index (master_item or qa_item)
        context (oracdr.context.ObservationContext): observation

    Returns:
        list: detector names (empty if the index has no suitable entry)
    """
    return _names(cal.get(item, context))


def from_file(cal):
    """
    Reads bad detectors from the first line of badbol.lis in the output directory

    Args:
        cal (oracdr.calib.Calibration): calibration object

    Returns:
        list: detector names
    """
    filepath = os.path.join(cal.config.data_out, badbol_file)
    if not os.path.exists(filepath):
        warnings.warn("Bad detector file {0} does not exist".format(filepath))
        return []
    with open(filepath, "r") as f:
        line = f.readline()
    return _names(line.split())


def bad_detectors(cal, context, system):
    """
    Merges the bad detectors of every enabled source

    Args:
        cal (oracdr.calib.Calibration): calibration object
        context (oracdr.context.ObservationContext): observation
        system (str): comma separated list of sources

    Returns:
        list: sorted, de-duplicated detector names. Empty if no source is enabled.
    """
    names = set()
    tokens = [token.strip() for token in (system or "").split(",") if len(token.strip()) > 0]

    for token in tokens:
        source = token.upper()
        if source == "NONE":
            continue
        elif source == "MASTER":
            names.update(from_index(cal, master_item, context))
        elif source in ("INDEX", "QA"):
            names.update(from_index(cal, qa_item, context))
        elif source == "INDEXORMASTER":
            found = cal.get(qa_item, context)
            if found is None:
                found = cal.get(master_item, context)
            names.update(_names(found))
        elif source == "FILE":
            names.update(from_file(cal))
        else:
            names.update(_names(token.split(":")))

    logger.info("Bad detectors from %s: %s", system, sorted(names))
    return sorted(names)
