import re
import subprocess
from pathlib import Path

from setuptools import find_packages, setup


def get_version() -> str:
    output = subprocess.run(
        [
            "git", "--git-dir", Path(__file__).parent / ".git",
            "describe", "--tags"
        ],
        capture_output=True
    ).stdout.decode().strip().split("-")
    # Output is either v1.3.5 if the tag points to the current commit or
    # something like this v1.3.5-11-g3b467ad if it doesn't

    version = ".".join(re.findall(r"\d+", output[0])) or "0.dev0"
    if len(output) > 1:
        return f"{version}+{output[-1]}"
    else:
        return version


setup(
    name="ranked-matchmaking-server",
    version=get_version(),
    packages=find_packages(include=["ranked", "ranked.*"]),
    py_modules=["main"],
    description="Ranked head to head matchmaking server",
    python_requires=">=3.9",
    install_requires=[
        "aio_pika",
        "aiocron",
        "aiomysql",
        "aiosqlite",
        "docopt",
        "humanize",
        "prometheus_client",
        "pyyaml",
        "sqlalchemy[asyncio]>=2.0",
    ],
    extras_require={
        "test": [
            "hypothesis",
            "pytest",
            "pytest-asyncio",
            "pytest-mock",
        ],
    },
    include_package_data=True
)
