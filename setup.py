from setuptools import find_packages, setup

with open("requirements.txt") as f:
    requirements = f.read().splitlines()

setup(
    name="foundry-storage-layout-check",
    version="0.2.0",
    description="Detect storage layout changes that are unsafe for upgradeable Foundry contracts",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": [
            "storage-check=storage_check.cli:app",
        ],
    },
)
