from setuptools import setup

# metadata and options are in setup.cfg
setup()
