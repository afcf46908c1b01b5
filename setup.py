from setuptools import setup, find_packages

setup(
    name="connect4live",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "numpy",
        "filelock>=3.11",  # per-thread lock state
        "websockets>=10.1",  # single-argument connection handlers
        "pydantic>=2",
        "pydantic-settings>=2",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "connect4live=connect4live.interfaces.cli:main",
        ],
    },
)
