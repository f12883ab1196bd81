"""
Setup file.
"""

from setuptools import find_packages, setup

KEYWORDS = "android vr quest ndk cmake vcpkg apk signing release deployment"


if __name__ == "__main__":
    setup(
        name="xrdeploy",
        version="0.1.0",
        description="Build variant resolution and release pipeline for an Android VR native engine",
        keywords=KEYWORDS,
        package_dir={"": "src"},
        packages=find_packages(where="src"),
        python_requires=">=3.9",
        install_requires=["psutil"],
        extras_require={"test": ["pytest"]},
        entry_points={"console_scripts": ["xrd=xrdeploy.cli:main"]},
        include_package_data=True,
    )
