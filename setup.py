#!/usr/bin/python3
# SPDX-License-Identifier: LGPL-2.1-or-later

from setuptools import find_packages, setup

setup(
    name="djinn",
    version="0.1.0",
    description="Run systemd in a bottle under WSL2",
    license="LGPLv2+",
    python_requires=">=3.9",
    packages=find_packages(".", exclude=["tests"]),
    install_requires=["psutil"],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["djinn = djinn.__main__:main"]},
)
