from pathlib import Path

from setuptools import setup

install_requires = [
    "trio>=0.22.0",
    "trio-websocket>=0.10.0",
    "asks>=3.0.0",
    "multidict>=6.0.0",
]


setup(
    name='erebus',
    version='0.1.0',
    packages=['erebus', 'erebus.core', 'erebus.dataclasses'],
    url='https://github.com/erebus-discord/erebus',
    license='LGPLv3',
    description='An async library for the Discord gateway',
    long_description=Path(__file__).with_name("README.rst").read_text(encoding="utf-8"),
    python_requires=">=3.8",
    classifiers=[
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3 :: Only",
        "Framework :: Trio",
        "Development Status :: 4 - Beta"
    ],
    install_requires=install_requires,
    extras_require={
        "test": [
            "pytest",
            "pytest-trio",
        ],
        "docs": [
            "sphinx_py3doc_enhanced_theme",
            "sphinx",
            "sphinx-autodoc-typehints",
        ]
    },
)
