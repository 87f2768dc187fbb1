from setuptools import setup, find_packages


setup(
    name="nativelib",
    version="0.1",
    packages=find_packages(include=["nativelib", "nativelib.*"]),
    description="ABI-aware scanning and change-aware extraction of the native libraries inside APK archives.",
    author="vercingetorx",
    python_requires=">=3.10",
    install_requires=[],
    entry_points={
        "console_scripts": [
            "nativelib=nativelib.cli:main",
        ]
    },
)
