"""
Setup script for mdns-discovery.
"""

from setuptools import setup, find_packages
import os


def read_readme():
    """Read README.md file."""
    readme_path = os.path.join(os.path.dirname(__file__), 'README.md')
    if os.path.exists(readme_path):
        with open(readme_path, 'r', encoding='utf-8') as f:
            return f.read()
    return "libp2p peer discovery over multicast DNS, with go-libp2p compatible records."


def read_requirements(filename):
    """Read requirements from a requirements file next to this script."""
    requirements_path = os.path.join(os.path.dirname(__file__), filename)
    requirements = []
    if os.path.exists(requirements_path):
        with open(requirements_path, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#'):
                    requirements.append(line)
    return requirements


setup(
    name="mdns-discovery",
    version="1.0.0",
    author="mdns-discovery Development Team",
    description="libp2p peer discovery over multicast DNS",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=['tests*']),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Framework :: AsyncIO",
        "Topic :: Internet :: Name Service (DNS)",
        "Topic :: System :: Networking",
    ],
    python_requires=">=3.10",
    install_requires=read_requirements('requirements.txt'),
    extras_require={
        "yaml": ["PyYAML>=6.0,<7.0"],
        "full": read_requirements('requirements-optional.txt'),
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "hypothesis>=6.0.0",
            "PyYAML>=6.0,<7.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "mypy>=1.0.0",
            "hypothesis>=6.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "mdns-discovery=mdns_discovery.cli.main:main",
        ],
    },
    keywords="mdns, multicast, dns, libp2p, peer discovery, multiaddr",
    zip_safe=False,
)
