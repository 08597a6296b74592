from setuptools import setup, find_packages


setup(
    name="tarstream",
    version="0.1",
    packages=find_packages(include=["tarstream", "tarstream.*"]),
    description="Streaming merge, build, search and extract for gzipped tarballs.",
    author="vercingetorx",
    install_requires=[],
    entry_points={
        "console_scripts": [
            "tarstream=tarstream.cli:main",
        ]
    },
)
