"""Setup configuration for Kumo Local."""
#
# Copyright 2025 KumoLocal and AmpScm contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from setuptools import setup, find_packages
from pathlib import Path
import re

# Read the version without importing the package
version_file = Path(__file__).parent / "kumo_local" / "__version__.py"
__version__ = re.search(
    r"^__version__ = ['\"]([^'\"]+)['\"]", version_file.read_text(encoding="utf-8"), re.MULTILINE
).group(1)

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read requirements
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
if requirements_file.exists():
    requirements = [
        line.strip()
        for line in requirements_file.read_text(encoding="utf-8").splitlines()
        if line.strip() and not line.startswith("#")
    ]

setup(
    name="kumo-local",
    version=__version__,
    author="Kumo Local Contributors",
    description="REST API for Mitsubishi Kumo devices via cloud and direct access",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["kumo_local", "kumo_local.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Home Automation",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    python_requires=">=3.11",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "httpx>=0.24",
        ],
    },
    entry_points={
        "console_scripts": [
            "kumo-local=kumo_local.__main__:main",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
