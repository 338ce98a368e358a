#!/usr/bin/env python
"""Setup script for backward compatibility with older pip versions.

sardis-paygate is configured in pyproject.toml. This setup.py is only
for tools that don't support PEP 517/518 builds.
"""

from setuptools import setup

if __name__ == "__main__":
    setup()
