#!/usr/bin/env python

# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Setuptools installer for portrelay.
"""

import pathlib

import setuptools

setuptools.setup(
    name="portrelay",
    version="1.0.0",
    description="Relay TCP ports to other addresses, built on Twisted.",
    long_description=pathlib.Path("README.rst").read_text(encoding="utf8"),
    long_description_content_type="text/x-rst",
    license="MIT",
    python_requires=">=3.8",
    package_dir={"": "src"},
    packages=setuptools.find_packages("src"),
    install_requires=[
        "Twisted >= 22.10.0",
        "zope.interface >= 5",
        "attrs >= 21.3.0",
        "Automat >= 22.10.0",
        "constantly >= 15.1",
        "incremental >= 22.10.0",
        "psutil >= 5.9",
    ],
    entry_points={
        "console_scripts": ["portrelay = portrelay.script:run"],
    },
    classifiers=[
        "Framework :: Twisted",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Topic :: Internet :: Proxy Servers",
    ],
)
