"""
Declarative descriptions of calibration items. An instrument is a table of these.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class SelectionPolicy(Enum):
    """How a calibration is picked out of its index."""
    NEAREST = "nearest" # closest in time, either side
    NEAREST_PAST = "nearest_past" # closest in time, never after the observation
    INTERPOLATE = "interpolate" # linear interpolation between nearest past and nearest future
    UNION = "union" # merge of several bad detector sources


class IndexLocation(Enum):
    """Where an item's index file lives."""
    DYNAMIC = "dynamic" # created in the output directory
    STATIC = "static" # read from the calibration search path
    COPY = "copy" # copied from the calibration search path into the output directory on first use


@dataclass
class CalibrationItem():
    """
    Description of one calibration item

    Attributes:
        name (str): item name, e.g. "dark"
        policy (SelectionPolicy): how entries are selected
        location (IndexLocation): where the index file lives
        columns (tuple): None if the item yields the index key (a file name). Otherwise the
                         columns that must be present in the matched entry: one column yields
                         that value, several yield the whole entry.
        fallback (callable): called as fallback(cal, context) when nothing in the index matches.
                             Returns a default value (never cached) or None.
        lenient (bool): return None instead of raising when nothing is found
        mode_split (bool): use separate _im and _sp index files for imaging and spectroscopy
        context_hook (callable): called as context_hook(cal, context) to build the context the
                                 index is queried with
        warn (bool): warn about each entry rejected by a rule while searching
        resolve_file (bool): return the selected key as a full path found with Calibration.find_file
        isarray (bool): value is an array. Overrides are stored as tuples.
        index_root (str): root name of the index and rules files if not the item name
        default (str): value used by UNION items when no source list has been set
    """
    name: str
    policy: SelectionPolicy = SelectionPolicy.NEAREST
    location: IndexLocation = IndexLocation.DYNAMIC
    columns: Optional[tuple] = None
    fallback: Optional[Callable] = None
    lenient: bool = False
    mode_split: bool = False
    context_hook: Optional[Callable] = None
    warn: bool = True
    resolve_file: bool = False
    isarray: bool = False
    index_root: Optional[str] = None
    default: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.columns, str):
            self.columns = (self.columns,)
        elif self.columns is not None:
            self.columns = tuple(self.columns)

    @property
    def root(self):
        """
        str: root name of the index and rules files
        """
        return self.index_root if self.index_root is not None else self.name

    @property
    def yields_value(self):
        """
        bool: True if the item returns values from the index rather than a file name
        """
        return self.columns is not None


class ItemState():
    """
    Mutable state held for one item by a Calibration object

    Attributes:
        value: cached value (None if nothing is cached). For searched items this is the last selection.
        noupdate (bool): True if the value was forced by the user and must not be re-derived
        selected (dict): last selection for each index root. The None key holds a value given with
                         Calibration.set(), which is tried against whichever index is used next.
    """

    def __init__(self):
        self.value = None
        self.noupdate = False
        self.selected = {}

    def __repr__(self):
        return "ItemState(value={0!r}, noupdate={1})".format(self.value, self.noupdate)

    def candidate(self, root):
        """
        Args:
            root (str): index root the observation uses

        Returns:
            the cached value to check against that index (None if there isn't one)
        """
        if root in self.selected:
            return self.selected[root]
        return self.selected.get(None)

    def store(self, value, root=None):
        """
        Caches a value, for one index root or (root=None) for any of them
        """
        if root is None:
            self.selected = {None: value}
        else:
            self.selected[root] = value
        self.value = value
