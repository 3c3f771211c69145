#!/usr/bin/env python3
# -*- coding: utf-8 -*-

# Standard library
from setuptools import setup, find_packages


# List of packages
pkgs = find_packages(exclude=["test", "test.*"])

# Create the build
setup(
    name="blobsy",
    packages=pkgs,
    install_requires=[
        "PyYAML",
        "boto3",
        "zstandard",
        "Brotli",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    description="Store large files next to git with small pointer files",
    entry_points={
        "console_scripts": [
            "blobsy=blobsy.cli:main",
        ]
    },
    version="0.1.0")
