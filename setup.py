#!/usr/bin/env python

from setuptools import setup

setup(
    name="session-logout-listener",
    version="1.0.0",
    py_modules=["ip_filter", "session_logout_listener"],
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "session-logout-listener=session_logout_listener:main",
        ],
    },
    install_requires=[
        "fastapi",
        "uvicorn",
        "pydantic",
        "python-multipart",
        "systemd-python",
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx",
        ],
    },
)
