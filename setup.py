#!/usr/bin/env python3
"""
Setup file for parquet2json
"""

from setuptools import setup, find_packages

setup(
    name="parquet2json",
    version="0.1.0",
    description="Streams Parquet files from local paths, HTTP(S) and S3 as newline-delimited JSON",
    author="",
    author_email="",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "thrift",
        "pyarrow",
        "httpx",
        "boto3",
        "botocore",
    ],
    extras_require={
        "dev": [
            "pytest",
            "coverage",
            "pandas",
        ],
    },
    entry_points={
        "console_scripts": [
            "parquet2json=parquet2json.cli:main",
        ],
    },
)
