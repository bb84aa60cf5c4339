# This file marks the directory as a Python package
