import re

from setuptools import setup

with open("README.rst") as readme:
    long_description = readme.read()

# read without importing, the package needs its dependencies to import
with open("psbtbuilder/__init__.py") as init:
    __version__ = re.search(r'__version__ = "([^"]+)"', init.read()).group(1)

setup(
    name="psbt-builder",
    version=__version__,
    description="Fee-aware builder of unsigned Bitcoin PSBTs",
    long_description=long_description,
    long_description_content_type="text/x-rst",
    author="The psbt-builder developers",
    license="MIT",
    keywords="bitcoin psbt transaction fee builder",
    python_requires=">=3.10",
    install_requires=[
        "base58check>=1.0.2,<2.0",
        "coincurve>=13.0.0",
        "embit>=0.7.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    packages=["psbtbuilder"],
    zip_safe=False,
)
