import os
import shutil
import warnings
import pytest
import oracdr.mocks as mocks
from oracdr.calib import Calibration
from oracdr.errors import ConfigurationError, CalibrationNotFoundError, OverrideRejectedError
from oracdr.items import CalibrationItem, IndexLocation, SelectionPolicy

testdir = os.path.join(os.path.dirname(__file__), "testcalib", "calib")
if os.path.exists(testdir):
    shutil.rmtree(testdir)
os.makedirs(testdir)

flat_rules = ["ORACTIME", "FILTER =="]
flat_columns = ["ORACTIME", "FILTER"]


def _setup(name, items, **options):
    """
    Makes output and calibration directories and a Calibration object using them

    Returns:
        tuple: (cal, data_out, cal_dir)
    """
    basedir = os.path.join(testdir, name)
    config = mocks.create_config(basedir, **options)
    cal = Calibration(config, items, name="TEST")
    return cal, config.data_out, config.cal_dirs[0]


def _flat_files(dirpath, entries, root="flat"):
    """
    Writes flat rules into dirpath and an index of (key, oractime, filter) entries
    """
    mocks.write_rules(dirpath, root, flat_rules)
    mocks.write_index(dirpath, root, flat_columns,
                      [(key, {"ORACTIME": t, "FILTER": filt}) for key, t, filt in entries])


def test_empty_index_raises():
    """
    Tests that an item with nothing in its index and no default raises a LookupError
    """
    cal, data_out, cal_dir = _setup("empty", [CalibrationItem("flat")])
    mocks.write_rules(cal_dir, "flat", flat_rules)
    obs = mocks.create_context(55000.15, FILTER="850")

    with pytest.raises(CalibrationNotFoundError):
        cal.get("flat", obs)
    with pytest.raises(LookupError):
        cal.get("flat", obs)
    assert(cal.cached("flat") is None)


def test_exact_match_selected():
    """
    Tests that the single suitable entry is returned and cached
    """
    cal, data_out, cal_dir = _setup("exact", [CalibrationItem("flat")])
    mocks.write_rules(cal_dir, "flat", flat_rules)
    mocks.write_index(data_out, "flat", flat_columns, [("flat_1", {"ORACTIME": 55000.1, "FILTER": 850})])
    obs = mocks.create_context(55000.15, FILTER="850")

    assert(cal.get("flat", obs) == "flat_1")
    assert(cal.cached("flat") == "flat_1")

    # the cached value is still good, so it is returned again
    assert(cal.get("flat", obs) == "flat_1")

    # querying with the stored context
    cal.context = obs
    assert(cal.get("flat") == "flat_1")


def test_no_match_uses_fallback():
    """
    Tests that a fallback default is used (with a warning) when nothing matches, and not cached
    """
    def fallback(cal, context):
        return "flat_default"

    cal, data_out, cal_dir = _setup("fallback", [CalibrationItem("flat", fallback=fallback),
                                                 CalibrationItem("dark")])
    _flat_files(data_out, [("flat_1", 55000.1, "850")])
    _flat_files(data_out, [("dark_1", 55000.1, "850")], root="dark")
    obs = mocks.create_context(55000.15, FILTER="450")

    with pytest.warns(UserWarning, match="flat_default"):
        assert(cal.get("flat", obs) == "flat_default")
    assert(cal.cached("flat") is None)

    # no fallback
    with pytest.raises(LookupError):
        cal.get("dark", obs)


def test_fallback_returning_none():
    """
    Tests that a fallback that can't find its default falls through to the lenient/raise handling
    """
    cal, data_out, cal_dir = _setup("fallback_none", [CalibrationItem("flat", fallback=lambda cal, context: None),
                                                      CalibrationItem("sky", fallback=lambda cal, context: None,
                                                                      lenient=True)])
    _flat_files(data_out, [("flat_1", 55000.1, "850")])
    _flat_files(data_out, [("sky_1", 55000.1, "850")], root="sky")
    obs = mocks.create_context(55000.15, FILTER="450")

    with pytest.raises(CalibrationNotFoundError):
        cal.get("flat", obs)
    with pytest.warns(UserWarning):
        assert(cal.get("sky", obs) is None)


def test_lenient_item():
    """
    Tests that a lenient item returns None with a warning instead of raising
    """
    cal, data_out, cal_dir = _setup("lenient", [CalibrationItem("resp", lenient=True, warn=False)])
    _flat_files(data_out, [], root="resp")
    obs = mocks.create_context(55000.15, FILTER="850")
    with pytest.warns(UserWarning, match="resp"):
        assert(cal.get("resp", obs) is None)


def test_stale_cache_reselected():
    """
    Tests that a cached calibration that no longer suits the observation is replaced
    """
    cal, data_out, cal_dir = _setup("stale", [CalibrationItem("flat")], warn_on_search=False)
    _flat_files(data_out, [("flat_850", 55000.1, "850"), ("flat_450", 55000.2, "450")])

    assert(cal.get("flat", mocks.create_context(55000.15, FILTER="850")) == "flat_850")
    assert(cal.get("flat", mocks.create_context(55000.15, FILTER="450")) == "flat_450")
    assert(cal.cached("flat") == "flat_450")

    # a set value that is unknown to the index is stale too
    cal.set("flat", "flat_unknown")
    assert(cal.get("flat", mocks.create_context(55000.15, FILTER="850")) == "flat_850")


def test_override_accepted():
    """
    Tests that a suitable override is used even when the index has a closer entry, every time
    """
    cal, data_out, cal_dir = _setup("override", [CalibrationItem("flat")])
    _flat_files(data_out, [("flat_1", 55000.1, "850"), ("flat_2", 55000.15, "850")])
    obs = mocks.create_context(55000.15, FILTER="850")

    cal.override("flat", "flat_1")
    assert(cal.noupdate("flat"))
    assert(cal.get("flat", obs) == "flat_1")
    assert(cal.get("flat", obs) == "flat_1")

    # set() does not replace an override
    cal.set("flat", "flat_2")
    assert(cal.cached("flat") == "flat_1")
    assert(cal.get("flat", obs) == "flat_1")

    cal.clear_override("flat")
    assert(not cal.noupdate("flat"))
    cal.set("flat", "flat_2")
    assert(cal.get("flat", obs) == "flat_2")


def test_override_rejected():
    """
    Tests that an override that fails the rules raises instead of searching the index
    """
    cal, data_out, cal_dir = _setup("override_rejected", [CalibrationItem("flat")])
    _flat_files(data_out, [("X", 55000.1, "450"), ("flat_850", 55000.1, "850")])
    obs = mocks.create_context(55000.15, FILTER="850")

    cal.override("flat", "X")
    with pytest.warns(UserWarning):
        with pytest.raises(OverrideRejectedError):
            cal.get("flat", obs)
    # and it stays rejected
    with pytest.warns(UserWarning):
        with pytest.raises(OverrideRejectedError):
            cal.get("flat", obs)
    assert(cal.cached("flat") == "X")

    # override of an unknown file is rejected too
    cal.override("flat", "not_in_index")
    with pytest.warns(UserWarning):
        with pytest.raises(OverrideRejectedError):
            cal.get("flat", obs)

    # override with no value
    cal.override("flat", None)
    with pytest.raises(ConfigurationError):
        cal.get("flat", obs)


def test_unknown_item():
    """
    Tests that asking for an item the instrument doesn't have is a configuration error
    """
    cal, data_out, cal_dir = _setup("unknown", [CalibrationItem("flat")])
    obs = mocks.create_context(55000.15, FILTER="850")
    with pytest.raises(ConfigurationError):
        cal.get("arc", obs)
    with pytest.raises(ConfigurationError):
        cal.register(CalibrationItem("flat"))
    # no observation at all
    with pytest.raises(ConfigurationError):
        cal.get("flat")


def test_missing_rules_file():
    """
    Tests that an index without a rules file is a configuration error
    """
    cal, data_out, cal_dir = _setup("norules", [CalibrationItem("flat")])
    obs = mocks.create_context(55000.15, FILTER="850")
    with pytest.raises(ConfigurationError):
        cal.get("flat", obs)


def test_index_locations():
    """
    Tests static indexes read from the calibration directory and copied indexes
    """
    cal, data_out, cal_dir = _setup("locations", [CalibrationItem("arlines", location=IndexLocation.STATIC),
                                                  CalibrationItem("polref", location=IndexLocation.COPY)])
    _flat_files(cal_dir, [("arlines_1", 55000.1, "850")], root="arlines")
    _flat_files(cal_dir, [("polref_1", 55000.1, "850")], root="polref")
    obs = mocks.create_context(55000.15, FILTER="850")

    assert(cal.get("arlines", obs) == "arlines_1")
    assert(cal.index("arlines", obs).indexfile == os.path.join(cal_dir, "index.arlines"))
    assert(not os.path.exists(os.path.join(data_out, "index.arlines")))

    assert(cal.get("polref", obs) == "polref_1")
    copied = os.path.join(data_out, "index.polref")
    assert(os.path.exists(copied))
    assert(cal.index("polref", obs).indexfile == copied)

    # new entries go into the copy only
    cal.add_entry("polref", "polref_2", mocks.create_context(55000.16, FILTER="850"))
    assert("polref_2" in cal.index("polref", obs))
    assert(cal.index("polref", obs).choose_nearest(obs) == "polref_2")
    with open(os.path.join(cal_dir, "index.polref")) as f:
        assert("polref_2" not in f.read())


def test_past_only_out_of_order():
    """
    Tests that a past-only item never reuses a cached calibration taken after the observation,
    even when observations are reduced out of time order
    """
    cal, data_out, cal_dir = _setup("past_order", [CalibrationItem("arlines", policy=SelectionPolicy.NEAREST_PAST)],
                                    warn_on_search=False)
    _flat_files(data_out, [("arl_early", 10.0, "850"), ("arl_late", 20.0, "850")], root="arlines")

    assert(cal.get("arlines", mocks.create_context(25.0, FILTER="850")) == "arl_late")
    assert(cal.get("arlines", mocks.create_context(15.0, FILTER="850")) == "arl_early")
    assert(cal.cached("arlines") == "arl_early")
    # a cached calibration from the past is still reused
    assert(cal.get("arlines", mocks.create_context(25.0, FILTER="850")) == "arl_early")

    # nothing before the observation
    with pytest.raises(CalibrationNotFoundError):
        cal.get("arlines", mocks.create_context(5.0, FILTER="850"))


def test_static_index_missing():
    """
    Tests that a static index that can't be found is a configuration error
    """
    cal, data_out, cal_dir = _setup("static_missing", [CalibrationItem("arlines", location=IndexLocation.STATIC)])
    mocks.write_rules(cal_dir, "arlines", flat_rules)
    with pytest.raises(ConfigurationError):
        cal.get("arlines", mocks.create_context(55000.15, FILTER="850"))


def test_mode_split():
    """
    Tests that mode dependent items switch index when the observation mode changes
    """
    basedir = os.path.join(testdir, "modes")
    config = mocks.create_config(basedir)
    cal = Calibration(config, [CalibrationItem("flat", mode_split=True)],
                      imaging_predicate=lambda context: context["MODE"] == "imaging")
    _flat_files(config.data_out, [("flat_im_1", 55000.1, "850")], root="flat_im")
    _flat_files(config.data_out, [("flat_sp_1", 55000.1, "850")], root="flat_sp")

    imaging = mocks.create_context(55000.15, FILTER="850", MODE="imaging")
    spectroscopy = mocks.create_context(55000.15, FILTER="850", MODE="spectroscopy")
    assert(cal.is_imaging_mode(imaging))
    assert(cal.is_spectroscopy_mode(spectroscopy))
    assert(cal.index_root("flat", imaging) == "flat_im")
    assert(cal.index_root("flat", spectroscopy) == "flat_sp")

    # each mode keeps its own selection, so switching back and forth checks nothing against the wrong index
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert(cal.get("flat", imaging) == "flat_im_1")
        assert(cal.get("flat", spectroscopy) == "flat_sp_1")
        assert(cal.get("flat", imaging) == "flat_im_1")
        assert(cal.get("flat", spectroscopy) == "flat_sp_1")
    assert(cal.cached("flat") == "flat_sp_1")

    # an instrument without modes
    cal, data_out, cal_dir = _setup("nomodes", [CalibrationItem("flat", mode_split=True)])
    with pytest.raises(ConfigurationError):
        cal.index_root("flat", imaging)


def test_value_items():
    """
    Tests items that return values from the index rather than file names
    """
    cal, data_out, cal_dir = _setup("values", [CalibrationItem("readnoise", columns="READNOISE"),
                                               CalibrationItem("pointing", columns=("DAZ", "DEL")),
                                               CalibrationItem("baseshift", columns="BASESHIFT", isarray=True)])
    mocks.write_rules(cal_dir, "readnoise", ["ORACTIME", "READNOISE"])
    mocks.write_index(data_out, "readnoise", ["ORACTIME", "READNOISE"],
                      [("rn_1", {"ORACTIME": 55000.1, "READNOISE": 12.5}),
                       ("rn_2", {"ORACTIME": 55000.9, "READNOISE": 14.0})])
    mocks.write_rules(cal_dir, "pointing", ["ORACTIME", "DAZ", "DEL"])
    mocks.write_index(data_out, "pointing", ["ORACTIME", "DAZ", "DEL"],
                      [("pt_1", {"ORACTIME": 55000.1, "DAZ": 1.5, "DEL": -0.5})])
    obs = mocks.create_context(55000.15)

    assert(cal.get("readnoise", obs) == 12.5)
    assert(cal.get("pointing", obs) == {"ORACTIME": 55000.1, "DAZ": 1.5, "DEL": -0.5})
    assert(cal.retrieve_by_column("pointing", "del", obs) == -0.5)
    assert(cal.retrieve_by_column("pointing", "NOTACOLUMN", obs) is None)

    # overrides are returned as given
    cal.override("readnoise", 20.0)
    assert(cal.get("readnoise", obs) == 20.0)
    cal.override("baseshift", [1.0, 2.0])
    assert(cal.get("baseshift", obs) == (1.0, 2.0))


def test_value_item_missing_column():
    """
    Tests that an entry without the wanted value raises
    """
    cal, data_out, cal_dir = _setup("value_missing", [CalibrationItem("zeropoint", columns="ZEROPOINT")])
    mocks.write_rules(cal_dir, "zeropoint", ["ORACTIME", "ZEROPOINT"])
    with open(os.path.join(data_out, "index.zeropoint"), "w") as f:
        f.write("#ID ORACTIME ZEROPOINT\n")
        f.write("zp_1 55000.1\n")
    obs = mocks.create_context(55000.15)
    with pytest.raises(LookupError):
        cal.get("zeropoint", obs)


def test_context_hook():
    """
    Tests that a context hook widens the query without changing the caller's context
    """
    def widen(cal, context):
        return context.augmented(LOFREQ_MIN=context["LOFREQ"] - 1.0, LOFREQ_MAX=context["LOFREQ"] + 1.0)

    cal, data_out, cal_dir = _setup("hook", [CalibrationItem("sideband_corr", columns="SB_CORR",
                                                             context_hook=widen)])
    mocks.write_rules(cal_dir, "sideband_corr", ["ORACTIME", "LOFREQ in $LOFREQ_MIN $LOFREQ_MAX", "SB_CORR"])
    mocks.write_index(data_out, "sideband_corr", ["ORACTIME", "LOFREQ", "SB_CORR"],
                      [("sb_1", {"ORACTIME": 55000.1, "LOFREQ": 345.5, "SB_CORR": 1.1}),
                       ("sb_2", {"ORACTIME": 55000.14, "LOFREQ": 230.0, "SB_CORR": 1.3})])
    obs = mocks.create_context(55000.15, LOFREQ=345.0)
    with pytest.warns(UserWarning):
        assert(cal.get("sideband_corr", obs) == 1.1)
    assert("LOFREQ_MIN" not in obs)


def test_interpolate():
    """
    Tests linear interpolation between the entries either side of the observation
    """
    cal, data_out, cal_dir = _setup("interp", [CalibrationItem("skydip", columns="TAUZ",
                                                               policy=SelectionPolicy.INTERPOLATE)])
    mocks.create_skydip_index(data_out, [("dip_1", 10.0, "850", 2.0), ("dip_2", 12.0, "850", 4.0)])
    obs = mocks.create_context(11.0, FILTER="850")

    # both entries are a day away
    with pytest.warns(UserWarning, match="hours"):
        value = cal.interpolate("skydip", "TAUZ", obs)
    assert(value == pytest.approx(3.0))

    with pytest.warns(UserWarning):
        assert(cal.get("skydip", obs) == pytest.approx(3.0))


def test_interpolate_one_side():
    """
    Tests that a single entry is used with a warning when there is nothing on the other side
    """
    cal, data_out, cal_dir = _setup("interp_one", [CalibrationItem("skydip", columns="TAUZ")])
    mocks.create_skydip_index(data_out, [("dip_1", 55000.10, "850", 0.08)])

    obs = mocks.create_context(55000.11, FILTER="850")
    with pytest.warns(UserWarning, match="single value"):
        assert(cal.interpolate("skydip", "TAUZ", obs) == pytest.approx(0.08))

    obs = mocks.create_context(55000.09, FILTER="850")
    with pytest.warns(UserWarning, match="single value"):
        assert(cal.interpolate("skydip", "TAUZ", obs) == pytest.approx(0.08))

    obs = mocks.create_context(55000.11, FILTER="450")
    with pytest.raises(CalibrationNotFoundError):
        cal.interpolate("skydip", "TAUZ", obs)


def test_interpolate_close_entries_quiet():
    """
    Tests that recent entries on both sides interpolate without warnings
    """
    cal, data_out, cal_dir = _setup("interp_quiet", [CalibrationItem("skydip", columns="TAUZ")])
    mocks.create_skydip_index(data_out, [("dip_1", 55000.10, "850", 0.10), ("dip_2", 55000.12, "850", 0.20)])
    obs = mocks.create_context(55000.11, FILTER="850")
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert(cal.interpolate("skydip", "TAUZ", obs) == pytest.approx(0.15))


def test_interpolate_text_value():
    """
    Tests that an entry whose value isn't a number can't be interpolated
    """
    cal, data_out, cal_dir = _setup("interp_text", [CalibrationItem("skydip", columns="TAUZ")])
    mocks.create_skydip_index(data_out, [("dip_1", 55000.10, "850", 0.10), ("dip_2", 55000.12, "850", "cloudy")])
    obs = mocks.create_context(55000.11, FILTER="850")
    with pytest.raises(CalibrationNotFoundError):
        cal.interpolate("skydip", "TAUZ", obs)


def test_add_entry():
    """
    Tests that a newly reduced calibration can be selected straight away
    """
    cal, data_out, cal_dir = _setup("add", [CalibrationItem("dark"),
                                            CalibrationItem("bad_receptors_qa", columns="DETECTORS")])
    mocks.write_rules(cal_dir, "dark", ["ORACTIME", "EXPTIME ~ 0.5"])
    mocks.write_rules(cal_dir, "bad_receptors_qa", ["ORACTIME", "DETECTORS"])

    darkobs = mocks.create_context(55000.10, EXPTIME=10.0)
    cal.add_entry("dark", "dark_20090618_00012", darkobs)
    assert(os.path.exists(os.path.join(data_out, "index.dark")))
    assert(cal.get("dark", mocks.create_context(55000.15, EXPTIME=10.0)) == "dark_20090618_00012")

    # columns not in the header are passed in
    cal.add_entry("bad_receptors_qa", "qa_1", darkobs, DETECTORS=("H01", "H07"))
    assert(cal.get("bad_receptors_qa", darkobs) == ("H01", "H07"))


def test_find_file():
    """
    Tests that the output directory is searched before the calibration directories
    """
    cal, data_out, cal_dir = _setup("findfile", [CalibrationItem("dark")])
    for dirpath in (data_out, cal_dir):
        with open(os.path.join(dirpath, "bpm.sdf"), "w") as f:
            f.write("bpm")
    with open(os.path.join(cal_dir, "fpa46_long.sdf"), "w") as f:
        f.write("bpm")

    assert(cal.find_file("bpm.sdf") == os.path.join(data_out, "bpm.sdf"))
    assert(cal.find_file("fpa46_long.sdf") == os.path.join(cal_dir, "fpa46_long.sdf"))
    assert(cal.find_file(os.path.join(cal_dir, "bpm.sdf")) == os.path.join(cal_dir, "bpm.sdf"))
    with pytest.raises(ConfigurationError):
        cal.find_file("nothere.sdf")


if __name__ == "__main__":
    test_empty_index_raises()
    test_exact_match_selected()
    test_no_match_uses_fallback()
    test_fallback_returning_none()
    test_lenient_item()
    test_stale_cache_reselected()
    test_override_accepted()
    test_override_rejected()
    test_unknown_item()
    test_missing_rules_file()
    test_index_locations()
    test_past_only_out_of_order()
    test_static_index_missing()
    test_mode_split()
    test_value_items()
    test_value_item_missing_column()
    test_context_hook()
    test_interpolate()
    test_interpolate_one_side()
    test_interpolate_close_entries_quiet()
    test_interpolate_text_value()
    test_add_entry()
    test_find_file()
