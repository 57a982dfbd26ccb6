[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bamdedup"
version = "0.1.0"
description = "Mark or remove duplicate reads in BAM files, consistent with Sambamba's markdup"
requires-python = ">=3.10"
dependencies = ["lz4"]
keywords = ["bam", "sam", "duplicates", "markdup", "sequencing", "genomics"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Bio-Informatics",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
bamdedup = "bamdedup.markdup:main"

[tool.hatch.build.targets.wheel]
packages = ["bamdedup"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
