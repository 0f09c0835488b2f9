#!/usr/bin/env python
# -*- encoding: utf-8 -*-
import io
import re
from os.path import dirname, join

from setuptools import find_packages, setup


def read(*names, **kwargs):
    return io.open(
        join(dirname(__file__), *names), encoding=kwargs.get("encoding", "utf8")
    ).read()


def find_version(*file_paths):
    contents = read(*file_paths)
    match = re.search(r"^__version__ = ['\"]([^'\"]*)['\"]", contents, re.M)
    if match:
        return match.group(1)
    raise RuntimeError("Unable to find version string.")


setup(
    name="awsauth",
    python_requires=">=3.7",
    version=find_version("src", "awsauth", "__init__.py"),
    license="MIT",
    description="Resolve AWS credentials via a provider chain and identify the owning account",
    long_description="""`awsauth` is both a CLI and library that resolves AWS credentials
through an ordered chain of sources (explicit configuration, environment
variables, the shared credentials file, ECS container roles, and EC2 instance
profiles) and then identifies the partition and account ID that own them by
trying several IAM, STS, and metadata APIs in turn.""",
    long_description_content_type="text/markdown",
    author="Pete Kazmier",
    author_email="opensource@fidelity.com",
    packages=find_packages("src"),
    package_dir={"": "src"},
    include_package_data=True,
    zip_safe=False,
    classifiers=[
        # complete classifier list: http://pypi.python.org/pypi?%3Aaction=list_classifiers
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: Unix",
        "Operating System :: POSIX",
        "Operating System :: Microsoft :: Windows",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: Implementation :: CPython",
        "Topic :: Utilities",
    ],
    keywords=["awsauth", "aws", "credentials", "cli"],
    install_requires=[
        "boto3>=1.12.39",
        "requests",
        "PyYAML>=3.10",
    ],
    tests_require=["pytest", "pytest-mock", "freezegun"],
    extras_require={"test": ["pytest", "pytest-mock", "freezegun"]},
    entry_points={
        "console_scripts": [
            "awsauth = awsauth.cli:main",
        ]
    },
)
