from setuptools import setup

setup(
    name="mmltools",
    version="0.1.0",
    packages=["mmltools", "mmltools.utils"],
    url="",
    license="BSD-3-Clause",
    author="nyanpasu64",
    author_email="",
    description="MML compiler producing time-ordered note and controller events",
    python_requires=">=3.7",
    install_requires=[
        "ruamel.yaml",
        "click",
        "more-itertools",
        "pygtrie",
    ],
    extras_require={"test": ["pytest", "pytest-mock"]},
    tests_require=["pytest", "pytest-mock"],
    entry_points={"console_scripts": ["mmlc=mmltools.cli:main"]},
)
