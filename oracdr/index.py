"""
Calibration index files.

An index file is a whitespace separated table::

    #ID ORACTIME FILTER EXPTIME
    dark_20090618_00012 55000.1 850 10.0
    dark_20090618_00047 55000.3 850 10.0

The first line names the columns (which must match the rules file), and every other line
is one calibration observation keyed by its ID (normally the file name of the reduced
calibration). Array values are written as comma separated lists.

Index files are not safe against several pipelines writing to the same output
directory at once. Give each pipeline run its own output directory.
"""
import logging
import os
import warnings
from enum import Enum

import numpy as np
import pandas as pd

from oracdr.errors import ConfigurationError, CalibrationNotFoundError
from oracdr.rules import parse_rules, RuleEvaluationError, _as_number

logger = logging.getLogger(__name__)

id_column = "ID"
time_column = "ORACTIME"
# distances in time closer than this are treated as equal
tie_tolerance = 1e-9


class VerifyResult(Enum):
    """Outcome of checking a previously selected calibration against an observation."""
    VALID = "valid" # still satisfies every rule
    STALE = "stale" # unknown to the index or fails a rule. search for a better one
    UNATTEMPTED = "unattempted" # no value to check, or the check itself could not be done

    def __bool__(self):
        return self is VerifyResult.VALID


def _coerce_value(token):
    """
    Converts a token read from an index file into a python value: numbers become floats,
    comma separated lists become tuples, everything else stays a string.

    Args:
        token (str): value as written in the file

    Returns:
        float, tuple, str or None: the value (None if the field was missing)
    """
    if not isinstance(token, str) or len(token) == 0:
        return None
    if "," in token:
        parts = [part for part in token.split(",") if len(part) > 0]
        try:
            return tuple(float(part) for part in parts)
        except ValueError:
            return tuple(parts)
    try:
        return float(token)
    except ValueError:
        return token


def _format_value(value):
    """
    Converts a python value into the token written to an index file

    Args:
        value: value to write

    Returns:
        str: the token
    """
    if isinstance(value, (tuple, list, np.ndarray)):
        if len(value) == 1:
            # trailing comma keeps a one element array an array
            return _format_value(value[0]) + ","
        return ",".join(_format_value(v) for v in value)
    if isinstance(value, (bool, np.bool_)):
        return str(bool(value))
    if isinstance(value, (float, np.floating)):
        return repr(float(value))
    return str(value)


class CalIndex:
    """
    Flat file index of the calibration observations of one kind, plus the rules that decide
    which of them can be used for a given observation.

    Args:
        indexfile (str): path to the index file. Need not exist yet.
        rulesfile (str): path to the rules file. Must exist.

    Attributes:
        indexfile (str): path to the index file
        rulesfile (str): path to the rules file
        rules (oracdr.rules.RuleSet): the rules
        columns (list): column names (without the ID column)
    """

    def __init__(self, indexfile, rulesfile):
        if rulesfile is None or not os.path.exists(rulesfile):
            raise ConfigurationError("Rules file {0} could not be located".format(rulesfile),
                                     details={"indexfile": indexfile})
        self.indexfile = indexfile
        self.rulesfile = rulesfile
        self.rules = parse_rules(rulesfile)
        self.columns = self.rules.columns

        if os.path.exists(self.indexfile):
            self.load()
        else:
            self._db = pd.DataFrame(columns=[id_column] + self.columns, dtype=object)

    def __len__(self):
        return len(self._db.index)

    def __contains__(self, key):
        return key in self.keys()

    def __repr__(self):
        return "CalIndex({0!r}, {1} entries)".format(self.indexfile, len(self))

    def keys(self):
        """
        Returns the entry keys in file order

        Returns:
            list: entry keys
        """
        return list(self._db[id_column].values)

    def load(self):
        """
        Load/update index from the index file. The header must match the rules file.
        """
        try:
            db = pd.read_csv(self.indexfile, sep=r"\s+", dtype=str, keep_default_na=False, index_col=False)
        except pd.errors.EmptyDataError:
            self._db = pd.DataFrame(columns=[id_column] + self.columns, dtype=object)
            return
        except pd.errors.ParserError as e:
            raise ConfigurationError("Index file {0} is corrupt: {1}".format(self.indexfile, e))

        file_columns = list(db.columns.values)
        if len(file_columns) == 0 or file_columns[0] != "#" + id_column or file_columns[1:] != self.columns:
            raise ConfigurationError("Columns of index file {0} do not match rules file {1}. Regenerate the index."
                                     .format(self.indexfile, self.rulesfile),
                                     details={"index": file_columns[1:], "rules": self.columns})

        db = db.rename(columns={"#" + id_column: id_column})
        for col in self.columns:
            db[col] = db[col].map(_coerce_value).astype(object)
        # later lines replace earlier lines with the same key
        db = db.drop_duplicates(subset=id_column, keep="last").reset_index(drop=True)
        self._db = db
        logger.debug("Loaded %d entries from %s", len(db.index), self.indexfile)

    def save(self):
        """
        Rewrite the whole index file
        """
        formatted = self._db.copy()
        for col in self.columns:
            formatted[col] = formatted[col].map(_format_value)
        formatted.to_csv(self.indexfile, sep=" ", index=False, header=["#" + id_column] + self.columns)

    def _row_from_header(self, key, header):
        """
        Picks the value of every column out of a header

        Args:
            key (str): entry key
            header (Mapping): header with a value for every column

        Returns:
            list: key followed by the column values
        """
        if len(str(key).split()) != 1:
            raise ConfigurationError("Index key '{0}' must be a single word".format(key))
        row = [str(key)]
        for col in self.columns:
            if col not in header or header[col] is None:
                raise ConfigurationError("Unable to add {0} to index {1}: header has no {2}"
                                         .format(key, self.indexfile, col))
            value = header[col]
            if isinstance(value, list):
                value = tuple(value)
            token = _format_value(value)
            if len(token) == 0 or len(token.split()) != 1:
                raise ConfigurationError("Value '{0}' of {1} cannot be stored in an index file".format(value, col))
            row.append(_coerce_value(token))
        return row

    def add(self, key, header):
        """
        Add a new entry, or replace the existing entry with the same key. New entries
        are appended to the file, replacements rewrite it.

        Args:
            key (str): entry key (usually the calibration file name)
            header (Mapping): header supplying a value for every column
        """
        new_row = self._row_from_header(key, header)
        key = new_row[0]

        if key in self.keys():
            row_index = self._db.index[self._db[id_column] == key][0]
            for col, val in zip(self.columns, new_row[1:]):
                self._db.at[row_index, col] = val
            self.save()
        else:
            new_entry = pd.DataFrame([new_row], columns=[id_column] + self.columns, dtype=object)
            if len(self._db) == 0:
                self._db = new_entry
            else:
                self._db = pd.concat([self._db, new_entry], ignore_index=True)

            if os.path.exists(self.indexfile) and os.path.getsize(self.indexfile) > 0:
                with open(self.indexfile, "a") as f:
                    f.write(" ".join([new_row[0]] + [_format_value(v) for v in new_row[1:]]) + "\n")
            else:
                self.save()

        logger.info("Added %s to index %s", key, self.indexfile)

    def get_entry(self, key):
        """
        Returns the column values of one entry

        Args:
            key (str): entry key

        Returns:
            dict: column values keyed by column name
        """
        matches = self._db[self._db[id_column] == key]
        if len(matches) == 0:
            raise CalibrationNotFoundError("{0} is not in index file {1}".format(key, self.indexfile))
        row = matches.iloc[0]
        return {col: row[col] for col in self.columns}

    def verify(self, key, context, warn=True):
        """
        Checks that an already selected calibration can still be used for this observation.
        Does not modify anything.

        Args:
            key (str): key of the selected calibration (None if nothing is selected)
            context (Mapping): observation header (an oracdr.context.ObservationContext)
            warn (bool): warn about why the calibration is unsuitable

        Returns:
            oracdr.index.VerifyResult: VALID, STALE or UNATTEMPTED
        """
        if key is None:
            return VerifyResult.UNATTEMPTED

        if key not in self.keys():
            if warn:
                warnings.warn("{0} is unknown to index {1} and may not be used as a calibration"
                              .format(key, os.path.basename(self.indexfile)))
            return VerifyResult.STALE

        try:
            ok, failed = self.rules.check(self.get_entry(key), context)
        except RuleEvaluationError as e:
            logger.error("Could not check %s against %s: %s", key, self.rulesfile, e)
            return VerifyResult.UNATTEMPTED

        if not ok:
            if warn:
                warnings.warn("{0} not a suitable calibration: failed {1}".format(key, failed))
            return VerifyResult.STALE
        return VerifyResult.VALID

    def _candidate_times(self, context, time_col, warn):
        """
        Scans the whole index for entries passing the rules

        Returns:
            tuple:
                keys (list):
                    keys of entries that pass, in file order
                times (np.array):
                    value of the time column for each of them
        """
        if time_col not in self.columns:
            raise ConfigurationError("Index {0} has no {1} column to select on".format(self.indexfile, time_col))

        keys = []
        times = []
        for _, row in self._db.iterrows():
            entry = {col: row[col] for col in self.columns}
            try:
                ok, failed = self.rules.check(entry, context)
            except RuleEvaluationError as e:
                logger.error("Skipping %s in %s: %s", row[id_column], self.indexfile, e)
                continue
            if not ok:
                if warn:
                    warnings.warn("{0} not a suitable calibration: failed {1}".format(row[id_column], failed))
                continue
            entry_time = _as_number(entry[time_col])
            if entry_time is None:
                logger.error("Skipping %s in %s: %s is not a time", row[id_column], self.indexfile, entry[time_col])
                continue
            keys.append(row[id_column])
            times.append(entry_time)
        return keys, np.array(times, dtype=float)

    def _choose(self, context, time_col, direction, warn):
        if time_col not in context:
            raise ConfigurationError("Observation has no {0} to select a calibration with".format(time_col))
        obs_time = float(context[time_col])

        keys, times = self._candidate_times(context, time_col, warn)
        dt = times - obs_time
        if direction < 0:
            eligible = np.where(dt <= 0)[0]
        elif direction > 0:
            eligible = np.where(dt >= 0)[0]
        else:
            eligible = np.arange(len(keys))

        if len(eligible) == 0:
            return None

        # distances within tie_tolerance are equal. ties go to the earliest entry in the file
        absdt = np.abs(dt[eligible])
        closest = np.where(np.isclose(absdt, absdt.min(), rtol=0, atol=tie_tolerance))[0]
        best = eligible[closest[0]]
        return keys[best]

    def choose_nearest(self, context, time_col=time_column, allow_future=True, warn=True):
        """
        Finds the entry passing the rules that is closest in time to the observation

        Args:
            context (Mapping): observation header
            time_col (str): column to measure time along
            allow_future (bool): if False, only entries taken at or before the observation are used
            warn (bool): warn about every entry rejected by a rule

        Returns:
            str: key of the best entry, or None if no entry passes the rules
        """
        return self._choose(context, time_col, 0 if allow_future else -1, warn)

    def choose_nearest_past(self, context, time_col=time_column, warn=True):
        """
        Finds the closest entry taken at or before the observation

        Args:
            context (Mapping): observation header
            time_col (str): column to measure time along
            warn (bool): warn about every entry rejected by a rule

        Returns:
            str: key of the best entry, or None
        """
        return self._choose(context, time_col, -1, warn)

    def choose_nearest_future(self, context, time_col=time_column, warn=True):
        """
        Finds the closest entry taken at or after the observation

        Args:
            context (Mapping): observation header
            time_col (str): column to measure time along
            warn (bool): warn about every entry rejected by a rule

        Returns:
            str: key of the best entry, or None
        """
        return self._choose(context, time_col, 1, warn)
