"""
Generic calibration selection. One Calibration object is used for a whole processing run
and answers "which calibration should this observation use?" for every calibration item
its instrument knows about.
"""
import logging
import os
import shutil
import warnings

from oracdr.context import ObservationContext
from oracdr.errors import ConfigurationError, CalibrationNotFoundError, OverrideRejectedError
from oracdr.index import CalIndex, VerifyResult, time_column
from oracdr.rules import _as_number
from oracdr.items import CalibrationItem, ItemState, IndexLocation, SelectionPolicy
import oracdr.receptors as receptors

logger = logging.getLogger(__name__)


def entry_number(entry, column, key):
    """
    Reads a numeric column of an index entry

    Args:
        entry (dict): index entry from CalIndex.get_entry
        column (str): column name
        key (str): key of the entry, for the error message

    Returns:
        float: the value
    """
    value = _as_number(entry.get(column))
    if value is None:
        raise CalibrationNotFoundError("Unable to obtain a numeric {0} from index file entry {1} (got {2!r})"
                                       .format(column, key, entry.get(column)))
    return value


class Calibration():
    """
    Calibration selection engine for one processing run

    Each item has a cached value, a no-update (override) flag and an index, all built from
    the item descriptors passed in. Values that were forced with override() are never
    re-derived; everything else is re-verified against the observation on every query.

    Args:
        config (oracdr.config.CalibConfig): paths and options
        items (list): list of oracdr.items.CalibrationItem
        imaging_predicate (callable): [optional] imaging_predicate(context) is True for imaging observations
        spectroscopy_predicate (callable): [optional] spectroscopy_predicate(context) is True for
                                           spectroscopy observations. Defaults to "not imaging".
        name (str): [optional] name of the instrument

    Attributes:
        config (oracdr.config.CalibConfig): paths and options
        items (dict): item descriptors keyed by name
        name (str): name of the instrument
        context (oracdr.context.ObservationContext): observation used when a query does not pass one
        opacity (oracdr.opacity.OpacityCalculator): tau and gain calculator (continuum instruments only)
    """

    def __init__(self, config, items, imaging_predicate=None, spectroscopy_predicate=None, name=""):
        self.config = config
        self.name = name
        self.items = {}
        self._state = {}
        self._indexes = {}
        self.imaging_predicate = imaging_predicate
        self.spectroscopy_predicate = spectroscopy_predicate
        self.context = None
        self.opacity = None

        for item in items:
            self.register(item)

    def __repr__(self):
        return "Calibration({0!r}, items={1})".format(self.name, sorted(self.items))

    def register(self, item):
        """
        Adds a calibration item

        Args:
            item (oracdr.items.CalibrationItem): item to add
        """
        if not isinstance(item, CalibrationItem):
            raise TypeError("item must be a CalibrationItem, got {0}".format(type(item)))
        if item.name in self.items:
            raise ConfigurationError("Calibration item {0} is defined twice".format(item.name))
        self.items[item.name] = item
        self._state[item.name] = ItemState()

    def item(self, name):
        """
        Looks up an item descriptor

        Args:
            name (str): item name

        Returns:
            oracdr.items.CalibrationItem: the descriptor
        """
        if name not in self.items:
            raise ConfigurationError("{0} does not have a '{1}' calibration".format(self.name or "Instrument", name))
        return self.items[name]

    ### cache and override handling

    def set(self, name, value):
        """
        Stores a value for an item, unless the item has been overridden

        Args:
            name (str): item name
            value: file name or value
        """
        item = self.item(name)
        state = self._state[name]
        if state.noupdate:
            logger.info("Ignoring new %s %r: override %r in effect", name, value, state.value)
            return
        state.store(self._normalise(item, value))

    def override(self, name, value):
        """
        Forces the value of an item (e.g. from the command line). It is used until
        clear_override() is called.

        Args:
            name (str): item name
            value: file name or value
        """
        item = self.item(name)
        state = self._state[name]
        state.value = self._normalise(item, value)
        state.noupdate = True

    def clear_override(self, name):
        """
        Allows an overridden item to be selected automatically again

        Args:
            name (str): item name
        """
        self.item(name)
        state = self._state[name]
        state.noupdate = False
        state.store(state.value)

    def noupdate(self, name):
        """
        Args:
            name (str): item name

        Returns:
            bool: True if the item has been overridden
        """
        self.item(name)
        return self._state[name].noupdate

    def cached(self, name):
        """
        Args:
            name (str): item name

        Returns:
            the currently cached value of the item (None if there isn't one)
        """
        self.item(name)
        return self._state[name].value

    def _normalise(self, item, value):
        if item.isarray and isinstance(value, list):
            return tuple(value)
        return value

    ### modes, files and indexes

    def _resolve_context(self, context):
        if context is None:
            context = self.context
        if context is None:
            raise ConfigurationError("No observation given to select a calibration for")
        if not isinstance(context, ObservationContext):
            context = ObservationContext(context)
        return context

    def is_imaging_mode(self, context=None):
        """
        Args:
            context (oracdr.context.ObservationContext): [optional] observation

        Returns:
            bool: True if the observation should use imaging (_im) calibrations
        """
        context = self._resolve_context(context)
        if self.imaging_predicate is None:
            raise ConfigurationError("{0} has no imaging/spectroscopy mode".format(self.name or "Instrument"))
        return bool(self.imaging_predicate(context))

    def is_spectroscopy_mode(self, context=None):
        """
        Args:
            context (oracdr.context.ObservationContext): [optional] observation

        Returns:
            bool: True if the observation should use spectroscopy (_sp) calibrations
        """
        context = self._resolve_context(context)
        if self.spectroscopy_predicate is not None:
            return bool(self.spectroscopy_predicate(context))
        return not self.is_imaging_mode(context)

    def find_file(self, filename):
        """
        Finds a file in the output directory or the calibration directories (in that order)

        Args:
            filename (str): file name

        Returns:
            str: full path to the first match
        """
        if filename is None:
            raise ConfigurationError("No file name given to find_file")
        if os.path.isabs(filename) and os.path.exists(filename):
            return filename
        directories = self.config.search_path
        for directory in directories:
            filepath = os.path.join(directory, filename)
            if os.path.exists(filepath):
                return filepath
        raise ConfigurationError("Could not find '{0}' in dirs {1}".format(filename, ",".join(directories)))

    def index_root(self, name, context=None):
        """
        Works out the root name of the index and rules files of an item for this observation.
        Mode dependent items are looked up afresh every time.

        Args:
            name (str): item name
            context (oracdr.context.ObservationContext): [optional] observation

        Returns:
            str: root, e.g. "flat_im"
        """
        item = self.item(name)
        if not item.mode_split:
            return item.root
        if self.is_imaging_mode(context):
            return item.root + "_im"
        return item.root + "_sp"

    def index(self, name, context=None):
        """
        Returns the index of an item, opening it the first time it is needed

        Args:
            name (str): item name
            context (oracdr.context.ObservationContext): [optional] observation (needed for mode dependent items)

        Returns:
            oracdr.index.CalIndex: the index
        """
        item = self.item(name)
        root = self.index_root(name, context)
        if root in self._indexes:
            return self._indexes[root]

        idxname = "index." + root
        if item.location == IndexLocation.STATIC:
            indexfile = self.find_file(idxname)
        else:
            indexfile = os.path.join(self.config.data_out, idxname)
            if item.location == IndexLocation.COPY and not os.path.exists(indexfile):
                static = self.find_file(idxname)
                shutil.copy(static, indexfile)
                logger.info("Copied %s to %s", static, indexfile)

        rulesfile = self.find_file("rules." + root)
        self._indexes[root] = CalIndex(indexfile, rulesfile)
        return self._indexes[root]

    def _query_context(self, item, context):
        if item.context_hook is not None:
            return item.context_hook(self, context)
        return context

    def _warn(self, item):
        return item.warn and self.config.warn_on_search

    def _choose(self, item, index, query):
        if item.policy == SelectionPolicy.NEAREST_PAST:
            return index.choose_nearest_past(query, warn=self._warn(item))
        return index.choose_nearest(query, warn=self._warn(item))

    ### selection

    def get(self, name, context=None):
        """
        Returns the calibration to use for an observation

        Args:
            name (str): item name
            context (oracdr.context.ObservationContext): [optional] observation. Uses self.context if not given.

        Returns:
            a file name, a value from the index, a dict of index values or, for lenient items, None
        """
        item = self.item(name)
        context = self._resolve_context(context)

        if item.policy == SelectionPolicy.UNION:
            system = self._state[name].value
            if system is None:
                system = item.default
            return receptors.bad_detectors(self, context, system)

        if item.yields_value:
            return self._get_value(item, context)
        return self._get_file(item, context)

    def _get_file(self, item, context):
        state = self._state[item.name]
        query = self._query_context(item, context)
        index = self.index(item.name, context)

        if state.noupdate:
            if state.value is None:
                raise ConfigurationError("Override {0} requested but no value was given".format(item.name))
            result = index.verify(state.value, query, warn=True)
            if result is VerifyResult.VALID:
                return self._resolve(item, state.value)
            if result is VerifyResult.UNATTEMPTED:
                raise ConfigurationError("Error in {0} calibration checking".format(item.name),
                                         details={"value": state.value, "index": index.indexfile})
            raise OverrideRejectedError("Override {0} '{1}' is not suitable for this observation"
                                        .format(item.name, state.value),
                                        details={"index": index.indexfile})

        root = self.index_root(item.name, context)
        cached = state.candidate(root)
        if cached is not None:
            result = index.verify(cached, query, warn=self._warn(item))
            if result is VerifyResult.VALID and self._taken_after(item, index, cached, query):
                logger.info("Not reusing %s %s: it was taken after this observation", item.name, cached)
                result = VerifyResult.STALE
            if result is VerifyResult.VALID:
                return self._resolve(item, cached)
            if result is VerifyResult.UNATTEMPTED:
                raise ConfigurationError("Error in {0} calibration checking".format(item.name),
                                         details={"value": cached, "index": index.indexfile})

        match = self._choose(item, index, query)
        if match is None:
            return self._not_found(item, context, index)

        logger.info("Using %s %s", item.name, match)
        state.store(match, root)
        return self._resolve(item, match)

    def _taken_after(self, item, index, key, query):
        """
        True if a past-only item's cached entry is later than the observation
        """
        if item.policy != SelectionPolicy.NEAREST_PAST:
            return False
        entry_time = _as_number(index.get_entry(key).get(time_column))
        if entry_time is None:
            return False
        return entry_time > query.oractime

    def _resolve(self, item, key):
        if item.resolve_file:
            return self.find_file(key)
        return key

    def _not_found(self, item, context, index):
        """
        Handles an index search that found nothing: fallback default, then lenient, then raise
        """
        if item.fallback is not None:
            default = item.fallback(self, context)
            if default is not None:
                warnings.warn("No suitable {0} found in {1}; using default {2}"
                              .format(item.name, os.path.basename(index.indexfile), default))
                return default
        if item.lenient:
            warnings.warn("No suitable {0} was found in {1}".format(item.name, os.path.basename(index.indexfile)))
            return None
        raise CalibrationNotFoundError("No suitable {0} calibration was found".format(item.name),
                                       details={"index": index.indexfile, "ORACTIME": context.get("ORACTIME")})

    def _get_value(self, item, context):
        state = self._state[item.name]
        if state.noupdate:
            if state.value is None:
                raise ConfigurationError("Override {0} requested but no value was given".format(item.name))
            return state.value

        if item.policy == SelectionPolicy.INTERPOLATE:
            return self.interpolate(item.name, item.columns[0], context)

        query = self._query_context(item, context)
        index = self.index(item.name, context)
        match = self._choose(item, index, query)
        if match is None:
            return self._not_found(item, context, index)

        entry = index.get_entry(match)
        for col in item.columns:
            if entry.get(col) is None:
                raise CalibrationNotFoundError("Unable to obtain {0} from index file entry {1}".format(col, match),
                                               details={"index": index.indexfile})
        if len(item.columns) == 1:
            return entry[item.columns[0]]
        return entry

    def retrieve_by_column(self, name, column, context=None):
        """
        Returns any column of the index entry closest in time to the observation

        Args:
            name (str): item name
            column (str): column name
            context (oracdr.context.ObservationContext): [optional] observation

        Returns:
            the column value, or None if the index has no such column
        """
        item = self.item(name)
        context = self._resolve_context(context)
        index = self.index(name, context)
        match = index.choose_nearest(self._query_context(item, context), warn=False)
        if match is None:
            raise CalibrationNotFoundError("Unable to find suitable calibration data from {0}".format(name))
        return index.get_entry(match).get(column.upper())

    def interpolate(self, name, column, context=None):
        """
        Linearly interpolates a column between the closest entries before and after the
        observation. Uses a single entry (with a warning) when only one side exists, and
        warns about entries older than the configured maximum age.

        Args:
            name (str): item name
            column (str): column to interpolate
            context (oracdr.context.ObservationContext): [optional] observation

        Returns:
            float: the interpolated value
        """
        item = self.item(name)
        context = self._resolve_context(context)
        query = self._query_context(item, context)
        index = self.index(name, context)
        obstime = query.oractime
        too_old = self.config.skydip_max_age / 24.0

        low = index.choose_nearest_past(query, warn=False)
        high = index.choose_nearest_future(query, warn=False)
        low_ent = index.get_entry(low) if low is not None else None
        high_ent = index.get_entry(high) if high is not None else None

        for key, entry, side in ((high, high_ent, "above"), (low, low_ent, "below")):
            if entry is None:
                continue
            age = abs(entry_number(entry, time_column, key) - obstime)
            entry_number(entry, column, key)
            if age > too_old:
                warnings.warn("The closest {0} (from {1}: {2}) is {3:5.2f} hours from this observation. Using it anyway."
                              .format(name, side, key, age * 24.0))

        if low_ent is not None and high_ent is not None:
            lowt = entry_number(low_ent, time_column, low)
            hight = entry_number(high_ent, time_column, high)
            lowz = entry_number(low_ent, column, low)
            highz = entry_number(high_ent, column, high)
            if hight == lowt:
                return lowz
            logger.info("Interpolating %s between %s and %s", column, low, high)
            return lowz + (obstime - lowt) * (highz - lowz) / (hight - lowt)

        if low_ent is None and high_ent is None:
            raise CalibrationNotFoundError("No suitable {0} on either side of this observation".format(name),
                                           details={"index": index.indexfile, "ORACTIME": obstime})

        warnings.warn("Cannot interpolate {0}: no suitable entry on both sides of this observation. Using a single value."
                      .format(name))
        if low_ent is not None:
            return entry_number(low_ent, column, low)
        return entry_number(high_ent, column, high)

    def add_entry(self, name, key, context=None, **values):
        """
        Records a newly reduced calibration in an item's index

        Args:
            name (str): item name
            key (str): entry key (usually the file name)
            context (oracdr.context.ObservationContext): [optional] header of the calibration observation
            **values: extra column values not in the header (e.g. DETECTORS, TAUZ)
        """
        item = self.item(name)
        context = self._resolve_context(context)
        header = self._query_context(item, context)
        if len(values) > 0:
            header = header.augmented(**values)
        self.index(name, context).add(key, header)
