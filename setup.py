"""
A setuptools based setup module.

See:
https://packaging.python.org/guides/distributing-packages-using-setuptools/
"""

import setuptools

INSTALL_REQUIRES = [
    "attrs>=22.2.0",
    "numpy",
    "sympy>=1.10",
]

EXTRAS_REQUIRE = {
    "test": [
        "pytest",
    ],
}


def long_description():
    """Parse long description from readme."""
    with open("README.md", "r") as readme_file:
        return readme_file.read()


setuptools.setup(
    name="ampcache",
    version="0.1.0",
    author="The ComPWA team",
    description="Cached, symmetrized evaluation of decay-chain amplitudes",
    long_description=long_description(),
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=setuptools.find_packages("src"),
    license="GPLv3 or later",
    python_requires=">=3.9",
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,
)
