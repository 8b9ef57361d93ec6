"""
Fills in the calibrations needed by the steps of a processing recipe.

A recipe is a JSON document with a list of steps. Each step can ask for calibrations::

    {
        "name": "REDUCE_DARK_AND_FLAT",
        "steps": [
            {"name": "subtract_dark", "calibs": {"dark": "AUTOMATIC"}},
            {"name": "mask_bad_pixels", "calibs": {"mask": "AUTOMATIC,OPTIONAL"}},
            {"name": "divide_by_flat", "calibs": {"flat": "flat_20090618_00047"}}
        ]
    }

AUTOMATIC calibrations are selected by the calibration object. Anything else is taken as
a user override and is checked against the observation before it is used.
"""
import json
import os
import warnings

from oracdr.context import ObservationContext
from oracdr.errors import CalibrationError
from oracdr.instruments import create_calibration


def load_recipe(filepath):
    """
    Reads a recipe from a JSON file

    Args:
        filepath (str): path to the recipe

    Returns:
        dict: the recipe
    """
    with open(filepath, "r") as f:
        recipe = json.load(f)
    return recipe


def fill_in_calibrations(step, cal, context):
    """
    Fills in calibrations defined as "AUTOMATIC" in a recipe step, and checks user supplied ones.

    By default, throws an error if no suitable calibration of a certain type exists.
    Calibrations marked "OPTIONAL" are set to None instead. Exceptional case is when the
    setting `skip_missing_cal_steps = True` is set: in this case, the step is marked to be
    skipped, but the rest of the recipe is still processed.

    Args:
        step (dict): the portion of a recipe for this step
        cal (oracdr.calib.Calibration): calibration object
        context (oracdr.context.ObservationContext): observation the step will process

    Returns:
        dict: the step, but with calibrations filled in
    """
    if "calibs" not in step:
        return step # don't have to do anything if no calibrations

    for calib in step["calibs"]:
        request = step["calibs"][calib]
        if request is None:
            continue

        if "AUTOMATIC" not in str(request).upper():
            # user gave a value, so it is an override that has to be verified
            cal.override(calib, request)

        # try to look up the best calibration, but it could raise an error
        try:
            best_cal = cal.get(calib, context)
        except CalibrationError as e:
            if "OPTIONAL" in str(request).upper():
                # optional calibration, so the step can run without it
                best_cal = None
            elif cal.config.skip_missing_cal_steps:
                step["skip"] = True # skip this step but continue
                step["calibs"][calib] = None
                warnings.warn("Skipping {0} because no suitable {1} was found and skip_missing_cal_steps is True ({2})"
                              .format(step["name"], calib, e))
                continue # continue on the for loop
            else:
                raise # reraise exception

        step["calibs"][calib] = best_cal

    return step


def resolve_recipe(recipe, cal, context, outputdir=None):
    """
    Fills in the calibrations of every step of a recipe

    Args:
        recipe (dict): the recipe
        cal (oracdr.calib.Calibration): calibration object
        context (oracdr.context.ObservationContext): observation the recipe will process
        outputdir (str): [optional] if given, the filled in recipe is saved here as JSON

    Returns:
        dict: the recipe with calibrations filled in
    """
    for step in recipe["steps"]:
        fill_in_calibrations(step, cal, context)

    if outputdir is not None:
        recipe_filename = "{0}_recipe.json".format(recipe.get("name", "oracdr"))
        with open(os.path.join(outputdir, recipe_filename), "w") as f:
            json.dump(recipe, f, indent=4, default=str)

    return recipe


def select_calibrations(instrument, filepath, calibs, config=None, overrides=None):
    """
    Selects calibrations for one FITS file

    Args:
        instrument (str): instrument name
        filepath (str): FITS file of the observation
        calibs (list): names of the calibrations wanted
        config (oracdr.config.CalibConfig): [optional] paths and options
        overrides (dict): [optional] user supplied values keyed by calibration name

    Returns:
        dict: calibration keyed by name
    """
    cal = create_calibration(instrument, config)
    context = ObservationContext.from_fits(filepath)

    step = {"name": os.path.basename(filepath), "calibs": {}}
    for name in calibs:
        step["calibs"][name] = overrides[name] if overrides is not None and name in overrides else "AUTOMATIC"
    return fill_in_calibrations(step, cal, context)["calibs"]
