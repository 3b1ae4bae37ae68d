from pathlib import Path
from setuptools import setup, find_packages

ROOT = Path(__file__).parent
README = (ROOT / "README.md").read_text(encoding="utf-8")  # markdown is more common

setup(
    name="firestore_sync_odm",
    version="0.1.0",
    description="Asynchronous typed-document sync layer for Google Cloud Firestore",
    long_description=README,
    long_description_content_type="text/markdown",
    author="Santos Dev Co",
    author_email="projects@santosdevco.com",
    url="https://github.com/santosdevco/firestore-sync-odm",
    license="MIT",
    packages=find_packages(exclude=("tests", "tests.*", "examples")),
    include_package_data=True,           # include py.typed
    package_data={"firestore_sync_odm": ["py.typed"]},
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=1.10,<3.0.0",
        "google-cloud-firestore>=2.11.0",  # FieldFilter
        "packaging",
    ],
    extras_require={
        "dev": ["black", "ruff", "pytest", "pytest-asyncio", "httpx"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Framework :: AsyncIO",
        "Topic :: Database :: Front-Ends",
        "Typing :: Typed",
    ],
    keywords=[
        "firestore",
        "pydantic",
        "odm",
        "asyncio",
        "realtime",
        "google cloud",
    ],
    project_urls={
        "Documentation": "https://github.com/santosdevco/firestore-sync-odm#readme",
        "Issue Tracker": "https://github.com/santosdevco/firestore-sync-odm/issues",
        "Source Code": "https://github.com/santosdevco/firestore-sync-odm",
    },
)
