#!/usr/bin/env python

from setuptools import setup

setup(
    name="esgraph",
    version="0.1.0",
    description="Elasticsearch indices as a federated GraphQL subgraph",
    packages=["esgraph", "esgraph.api"],
    include_package_data=True,
    zip_safe=False,
    keywords=["GraphQL", "federation", "elasticsearch"],
    classifiers=[
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Topic :: Database :: Front-Ends",
    ],
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "elasticsearch~=8.6",
        "python-dotenv",
        "pydantic>=2",
        "pydantic-settings",
        "uvicorn",
        "graphql-core>=3.2",
        "ariadne>=0.20",
        "case-converter",
    ],
    extras_require={
        'dev': [
            'pytest',
            'anyio',
            'httpx',
            'mypy',
            'flake8',
            'pre-commit',
        ]
    },
    entry_points={
        'console_scripts': [
            'esgraph = esgraph.__main__:main'
        ]
    },
)
