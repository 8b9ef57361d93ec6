import configparser
import os
import pathlib

__version__ = "1.0"
version = __version__

#### Create a configuration file for oracdr if it doesn't exist.
def create_config_dir():
    """
    Checks if the default .oracdr directory exists, and if not, it sets it up
    """
    global config_folder
    homedir = pathlib.Path.home()
    config_folder = os.path.join(homedir, ".oracdr")

    # make folder if doesn't exist
    if not os.path.isdir(config_folder):
        os.mkdir(config_folder)

    # make default calibrations folder if it doesn't exist
    default_cal_dir = os.path.join(config_folder, "cal")
    if not os.path.exists(default_cal_dir):
        os.mkdir(default_cal_dir)

    # write config if it doesn't exist
    config_filepath = os.path.join(config_folder, "oracdr.cfg")
    if not os.path.exists(config_filepath):
        config = configparser.ConfigParser()
        config["PATH"] = {}
        config["PATH"]["caldir"] = default_cal_dir # shared, read-only calibration files
        config["PATH"]["dataout"] = "" # per-run output directory. empty means current directory
        config["CALIB"] = {}
        config["CALIB"]["warn_on_search"] = "True"
        config["CALIB"]["skydip_max_age"] = "3.0"
        config["CALIB"]["lofreq_halfwidth"] = "1.0"
        config["WALKER"] = {}
        config["WALKER"]["skip_missing_cal_steps"] = "False"

        with open(config_filepath, 'w') as f:
            config.write(f)

        print("oracdr: Configuration file written to {0}. Please edit if you want things stored in different locations.".format(config_filepath))


def update_pipeline_settings():
    """
    Loads configuration file to update pipeline settings
    """
    global config_filepath
    global default_cal_dir, data_out_dir, warn_on_search, skydip_max_age, lofreq_halfwidth, skip_missing_cal_steps
    config_filepath = os.path.join(pathlib.Path.home(), ".oracdr", "oracdr.cfg")
    config = configparser.ConfigParser()
    config.read(config_filepath)

    _bool_map = {"true" : True, "false" : False}

    ## pipeline settings
    default_cal_dir = config.get("PATH", "caldir", fallback=None) # path to shared calibration directory
    data_out_dir = config.get("PATH", "dataout", fallback="") # per-run output directory
    warn_on_search = _bool_map[config.get("CALIB", "warn_on_search", fallback='true').lower()] # warn about each rejected index entry
    skydip_max_age = config.getfloat("CALIB", "skydip_max_age", fallback=3.0) # hours before a skydip is considered old
    lofreq_halfwidth = config.getfloat("CALIB", "lofreq_halfwidth", fallback=1.0) # GHz either side of the LO frequency
    skip_missing_cal_steps = _bool_map[config.get("WALKER", "skip_missing_cal_steps", fallback='false').lower()] # skip steps, instead of crashing, when suitable calibration cannot be found


create_config_dir()
update_pipeline_settings()
