from setuptools import setup

with open("README.md", "r", encoding="utf-8") as fp:
    long_description = fp.read()

setup(
    name="mcclient",
    version="1.0.0",
    description="mcclient is a module that provides both an API to provision, authenticate and launch "
                "Minecraft: Java Edition, and an executable script to run the mcclient CLI.",
    author="mcclient contributors",
    packages=["mcclient", "mcclient.cli"],
    url="https://github.com/mcclient/mcclient",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="GPL-3.0",
    python_requires=">=3.8",
    install_requires=["certifi"],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["mcclient = mcclient.cli:main"]},
)
