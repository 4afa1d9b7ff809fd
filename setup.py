from setuptools import setup, find_packages

# Read version from __version__.py without importing the package
version_file = {}
with open("reelscribe/__version__.py") as fp:
    exec(fp.read(), version_file)
__version__ = version_file['__version__']

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Relaxed Python version requirement (allow 3.9 to 3.12)
python_requires = ">=3.9,<3.13"

install_requires = [
    # Transport and provider SDKs
    "requests",
    "urllib3>=1.26",
    "openai>=1.35.0",
    "google-genai>=1.39.0",

    # Media analysis and subtitles
    "numpy",
    "soundfile",
    "srt",
    "regex",
    "tqdm",

    # Configuration system
    "pydantic>=2.0,<3.0",
    "PyYAML>=6.0",
]

extras_require = {
    "test": [
        "pytest",
        "httpx",  # request/response objects for openai error fixtures
    ],
}

# Classifiers for supported Python versions
classifiers = [
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3.9",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Operating System :: OS Independent",
]

setup(
    name="reelscribe",
    version=__version__,
    description="Video-to-subtitle transcription with provider fallback, visual synthesis and resumable caching",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(include=["reelscribe", "reelscribe.*"]),
    classifiers=classifiers,
    python_requires=python_requires,
    install_requires=install_requires,
    extras_require=extras_require,
    entry_points={
        "console_scripts": [
            "reelscribe=reelscribe.main:main",
        ],
    },
    zip_safe=False,
)
