""" owclient build script for setuptools.

"""

from setuptools import find_packages, setup  # type: ignore

import owclient

with open("README.md", "r", encoding="ascii") as file_:
    longdescription = file_.read()

setup(
    name=owclient.name,
    version=owclient.__version__,
    license=owclient.__license__,
    author=owclient.__author__,
    author_email=owclient.__author_email__,
    description="A client library for the Obyte multisig wallet service",
    long_description=longdescription,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=["btclib>=2023.2.3,<2024", "cryptography"],
    extras_require={
        "secp256k1": ["btclib_libsecp256k1"],
        "test": ["pytest"],
    },
    keywords=(
        "obyte wallet multisig bip32 bip39 ecdsa RFC-6979 "
        "hierarchical-deterministic transaction-proposal"
    ),
    python_requires=">=3.7",
    classifiers=[
        "Programming Language :: Python :: 3.7",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Natural Language :: English",
        "Operating System :: OS Independent",
        "Topic :: Security :: Cryptography",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
