from setuptools import find_packages, setup  # isort: skip


setup(
    name="covwatch",
    version="0.1.0",
    description="Statement, branch and function coverage for Python test suites, across processes",
    packages=find_packages(exclude=["tests*"]),
    package_data={
        "covwatch": ["py.typed"],
    },
    zip_safe=False,
    python_requires=">=3.9",
    install_requires=[
        "envier>=0.5",
        "wrapt>=1",
    ],
    extras_require={
        "test": [
            "pytest>=7",
            "mock",
        ],
    },
    entry_points={
        "console_scripts": [
            "covwatch-run = covwatch.commands.covwatch_run:main",
        ],
    },
)
