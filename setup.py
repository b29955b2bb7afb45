"""
The setup.py file is a command line application built with setuptools.

It can be executed directly with python: `python setup.py --help`

The call to setuptools.setup (below) describes this python package and
enables all of the build, package, dist, install functionality required
to package this code for all the standard python tools like pip and pipenv
"""
from setuptools import setup, find_packages

setup(
    name="ocibundle",
    description="Distribute directory trees as OCI artifacts, safely.",
    version="0.1.0",
    packages=find_packages(include=["ocibundle", "ocibundle.*"]),
    python_requires=">=3.8",
    install_requires=[
        "structlog",
        "ruamel.yaml>=0.17",
        "sortedcontainers",
    ],
    extras_require={"test": ["pytest", "py"]},
)
