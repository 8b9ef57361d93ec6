from setuptools import setup, find_packages



def get_requires():
    reqs = []
    for line in open("requirements.txt", "r").readlines():
        reqs.append(line)
    return reqs

setup(
    name='oracdr',
    version="1.0",
    description='ORAC-DR calibration selection engine: picks the calibrations to use for an astronomical observation',
    #long_description="",
    #long_description_content_type="text/markdown",
    url='https://github.com/Starlink/ORAC-DR',
    author='ORAC-DR Developers',
    #author_email='',
    license='GPL',
    packages=find_packages(include=["oracdr", "oracdr.*"]),
    classifiers=[
        # Indicate who your project is intended for
        'Intended Audience :: Science/Research',
        'Topic :: Scientific/Engineering :: Astronomy',

        'Programming Language :: Python :: 3',
        ],
    keywords='Astronomy Data Reduction Calibration JCMT UKIRT',
    install_requires=get_requires(),
    extras_require={"test": ["pytest"]},
    )
