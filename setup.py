"""
Setup script for the MCP Stream Multiplexer package.
"""

from setuptools import setup, find_packages

setup(
    name="mcp_stream_mux",
    version="0.1.0",
    description="A library for following the output of multiple running processes without blocking",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10",
    install_requires=[
        "fastmcp>=2.7",
    ],
    entry_points={
        'console_scripts': [
            'mcp_streammux=mcp_stream_mux.stream_manager:main',
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: POSIX",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: System :: Logging",
        "Topic :: System :: Monitoring",
    ],
)
